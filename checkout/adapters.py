"""In-process stub adapters for the checkout ports.

These stubs implement ``DocumentStore`` and ``PaymentGatewayPort`` without
any network or database access. They are intended for unit tests and local
development where deterministic behavior is useful and external services
are not required.
"""

import copy
import threading
import uuid
from typing import Dict, List, Optional, Tuple, Union

from .domain import DocumentNotFound, DocumentStore, GatewayUnavailable, PaymentGatewayPort


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store.

    Documents are deep-copied on the way in and out so callers can never
    mutate stored state by accident. All operations are serialized by an
    internal lock, matching the per-document atomicity of a real store.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, dict]] = {}

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, data: dict, merge: bool = False) -> None:
        with self._lock:
            docs = self._collections.setdefault(collection, {})
            if merge and doc_id in docs:
                docs[doc_id].update(copy.deepcopy(data))
            else:
                docs[doc_id] = copy.deepcopy(data)

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        with self._lock:
            docs = self._collections.get(collection, {})
            if doc_id not in docs:
                raise DocumentNotFound(f"{collection}/{doc_id}")
            docs[doc_id].update(copy.deepcopy(fields))

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            self._collections.get(collection, {}).pop(doc_id, None)

    def list(self, collection: str) -> List[Tuple[str, dict]]:
        with self._lock:
            return [(k, copy.deepcopy(v)) for k, v in self._collections.get(collection, {}).items()]

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.set(collection, doc_id, data)
        return doc_id


QueryStep = Union[dict, Exception]


class GatewayStub(PaymentGatewayPort):
    """Configurable fake payment gateway.

    Transaction requests succeed or fail according to ``configure()``.
    Status queries replay ``query_script`` in order (dicts are returned,
    exceptions are raised) and fall back to ``default_query_response`` once
    the script is exhausted. Every call is recorded in ``calls``.
    """

    def __init__(self, query_script: Optional[List[QueryStep]] = None):
        self.should_succeed: bool = True
        self.failure_message: str = "Transaction rejected"
        self.unavailable: bool = False
        self.checkout_base: str = "https://stub-gateway.local/checkout"
        self.query_script: List[QueryStep] = list(query_script or [])
        self.default_query_response: dict = {"ret": 0, "txStatus": "PENDING"}
        self.calls: List[dict] = []

    def configure(self, should_succeed: bool, failure_message: str = "Transaction rejected") -> None:
        """Configure transaction request behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_message = failure_message

    @property
    def query_count(self) -> int:
        return sum(1 for c in self.calls if c["method"] == "query_transaction")

    async def request_transaction(self, payload: dict) -> dict:
        self.calls.append({"method": "request_transaction", "payload": payload})
        if self.unavailable:
            raise GatewayUnavailable("ConnectError: stub gateway offline")
        if not self.should_succeed:
            return {"ret": 1, "msg": self.failure_message}
        tx_id = f"stub_tx_{uuid.uuid4().hex[:12]}"
        return {"ret": 0, "txId": tx_id, "checkoutUrl": f"{self.checkout_base}/{tx_id}"}

    async def query_transaction(self, tx_id: str, timeout: Optional[float] = None) -> dict:
        self.calls.append({"method": "query_transaction", "tx_id": tx_id})
        step = self.query_script.pop(0) if self.query_script else self.default_query_response
        if isinstance(step, Exception):
            raise step
        return dict(step)
