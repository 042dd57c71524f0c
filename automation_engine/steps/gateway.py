"""Side-effect gateways used by action executors."""

import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..core.logging import get_logger

logger = get_logger(__name__)

SIMULATED_NAMESPACE = uuid.UUID("0f4c7a52-2b8e-4d4f-9c36-6a1d3e5b7f10")


class SideEffectGateway(ABC):
    """Interface for everything an action node may do to the outside world.

    Implementations raise StepExecutionError (or any exception, which the
    traversal engine wraps) when the side effect cannot be performed.
    Calls are not deduplicated: a retried execution repeats them.
    """

    @abstractmethod
    def create_record(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def update_record(self, table: str, record_id: Any, values: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    def delete_record(self, table: str, record_id: Any) -> Dict[str, Any]:
        pass

    @abstractmethod
    def send_email(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    def call_external_api(
        self,
        url: str,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        pass


class SimulatedGateway(SideEffectGateway):
    """Gateway that only logs what it would have done.

    Generated ids are deterministic for the same input so repeated runs of a
    workflow produce identical logs.
    """

    def create_record(self, table, values):
        record_id = str(uuid.uuid5(SIMULATED_NAMESPACE, f"{table}:{sorted(values.items())!r}"))
        logger.info(f"[simulated] create record in '{table}' -> {record_id}")
        return {"record_id": record_id}

    def update_record(self, table, record_id, values):
        logger.info(f"[simulated] update record {record_id} in '{table}' ({len(values)} fields)")
        return {"record_id": record_id, "updated": True}

    def delete_record(self, table, record_id):
        logger.info(f"[simulated] delete record {record_id} from '{table}'")
        return {"record_id": record_id, "deleted": True}

    def send_email(self, to, subject, body):
        logger.info(f"[simulated] send email to {to}: {subject!r}")
        return {"sent": True, "to": to}

    def call_external_api(self, url, method, payload=None, headers=None):
        logger.info(f"[simulated] {method} {url}")
        return {"status_code": 200, "response": "simulated-response"}
