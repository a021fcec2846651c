"""
base_repository.py

Abstract contract of the data access layer.

Goal:
- Define the standard interface for CRUD, query and aggregate operations.
- Keep callers (routes, services, scripts) independent of the backend, so
  Google Sheets can be swapped for a database without touching them.

Today:
- The concrete implementation is SheetsRepository.
- No executable logic here.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence


class BaseRepository(ABC):

    @abstractmethod
    def create(self, table: str, record: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    def read(self, table: str, id: Optional[str] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def update(self, table: str, id: str, partial: Dict[str, Any]) -> bool:
        pass

    @abstractmethod
    def delete(self, table: str, id: str) -> bool:
        pass

    @abstractmethod
    def batch_create(self, table: str, records: Sequence[Dict[str, Any]]) -> List[str]:
        pass

    @abstractmethod
    def batch_update(self, operations: Sequence[Any]) -> Any:
        pass

    @abstractmethod
    def query(self, table: str, query: Any = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def aggregate(self, table: str, operation: str, field: Optional[str] = None, query: Any = None) -> Any:
        pass
