"""
Directory Module

Employee directory lookups used by identity resolution.

The directory itself lives outside this package; CsvDirectory reads an
employee export and MappingStore persists manual token bindings as JSON.
"""

import csv
import json
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from domain.entities import DirectoryEmployee
from domain.identity_resolver import normalize_token
from infrastructure.logger import get_logger

logger = get_logger("Directory")


class DirectoryService(ABC):
    """Interface of the external employee directory."""

    @abstractmethod
    def resolve_identities(self, tokens: List[str]) -> Dict[str, List[DirectoryEmployee]]:
        """
        Look up candidates for each token.

        Returns:
            Dictionary of token -> candidate employees; tokens without
            candidates may be omitted
        """
        pass

    @abstractmethod
    def search_employees(self, query: str, limit: int = 20) -> List[DirectoryEmployee]:
        """Search employees by name, employee number or id."""
        pass

    @abstractmethod
    def bind_identity(self, token: str, employee_id: str) -> DirectoryEmployee:
        """
        Persist a manual token -> employee binding.

        Raises:
            KeyError: If the employee id is unknown
        """
        pass


class MappingStore:
    """
    JSON file of manual token -> employee id bindings.

    Format: {"mappings": {"<token>": "<employee id>", ...}}
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._mappings: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self) -> Dict[str, str]:
        """Load bindings from disk; a missing file means no bindings."""
        if self.path is None or not self.path.exists():
            self._mappings = {}
            return dict(self._mappings)
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            self._mappings = {str(k): str(v) for k, v in data.get("mappings", {}).items()}
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Failed to load identity mappings from {self.path}, starting empty: {e}")
            self._mappings = {}
        return dict(self._mappings)

    def save(self) -> None:
        if self.path is None:
            return
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump({"mappings": self._mappings}, f, indent=2, ensure_ascii=False)

    def get(self, token: str) -> Optional[str]:
        with self._lock:
            return self._mappings.get(token)

    def set(self, token: str, employee_id: str) -> None:
        with self._lock:
            self._mappings[token] = employee_id
            self.save()

    def all(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._mappings)


class CsvDirectory(DirectoryService):
    """
    Directory backed by an employee CSV export.

    The CSV should have columns: id, name, employee_no, office_id, office_name.
    The biometric token of an employee is the first token of employee_no
    (e.g. "8540010, E-4" -> "8540010").
    """

    EMPLOYEE_NO_SPLIT = re.compile(r'[,;\s]+')

    def __init__(
        self,
        employees: Iterable[DirectoryEmployee] = (),
        mapping_store: Optional[MappingStore] = None,
        token_pad_length: int = 0,
    ):
        self.mapping_store = mapping_store or MappingStore()
        self.token_pad_length = token_pad_length
        self._by_id: Dict[str, DirectoryEmployee] = {}
        self._by_token: Dict[str, List[DirectoryEmployee]] = {}
        for employee in employees:
            self.add_employee(employee)

    @classmethod
    def from_csv(
        cls,
        csv_path: Path,
        mapping_store: Optional[MappingStore] = None,
        token_pad_length: int = 0,
    ) -> "CsvDirectory":
        """
        Load the directory from a CSV file.

        A missing file yields an empty directory, so every token is unmatched.
        """
        csv_path = Path(csv_path)
        employees = []
        if csv_path.exists():
            with open(csv_path, 'r', encoding='utf-8-sig') as f:
                reader = csv.DictReader(f)
                for row in reader:
                    row = {(k or '').strip().lower(): (v or '').strip() for k, v in row.items()}
                    if not row.get('id') or not row.get('name'):
                        continue
                    employees.append(DirectoryEmployee(
                        id=row['id'],
                        name=row['name'],
                        employee_no=row.get('employee_no') or None,
                        office_id=row.get('office_id') or None,
                        office_name=row.get('office_name') or None,
                    ))
        else:
            logger.warning(f"Employee directory not found: {csv_path}")
        logger.info(f"Loaded {len(employees)} employee(s) from directory")
        return cls(employees, mapping_store, token_pad_length)

    def token_for(self, employee: DirectoryEmployee) -> Optional[str]:
        if not employee.employee_no:
            return None
        first = self.EMPLOYEE_NO_SPLIT.split(employee.employee_no.strip())[0]
        return normalize_token(first, self.token_pad_length) or None

    def add_employee(self, employee: DirectoryEmployee) -> None:
        self._by_id[employee.id] = employee
        token = self.token_for(employee)
        if token:
            self._by_token.setdefault(token, []).append(employee)

    def resolve_identities(self, tokens: List[str]) -> Dict[str, List[DirectoryEmployee]]:
        result: Dict[str, List[DirectoryEmployee]] = {}
        for token in tokens:
            bound_id = self.mapping_store.get(token)
            if bound_id and bound_id in self._by_id:
                result[token] = [self._by_id[bound_id]]
                continue
            candidates = self._by_token.get(token)
            if candidates:
                result[token] = list(candidates)
        return result

    def search_employees(self, query: str, limit: int = 20) -> List[DirectoryEmployee]:
        needle = (query or '').strip().lower()
        if not needle:
            return []
        matches = [
            employee for employee in self._by_id.values()
            if needle in employee.name.lower()
            or needle in (employee.employee_no or '').lower()
            or needle == employee.id.lower()
        ]
        matches.sort(key=lambda e: (e.name.lower(), e.id))
        return matches[:limit]

    def bind_identity(self, token: str, employee_id: str) -> DirectoryEmployee:
        employee = self._by_id.get(employee_id)
        if employee is None:
            raise KeyError(f"Unknown employee id: {employee_id}")
        self.mapping_store.set(token, employee_id)
        logger.info(f"Saved manual mapping {token} -> {employee_id}")
        return employee
