"""
Doublures de test: client Supabase en mémoire et serveur PayTabs scripté (httpx.MockTransport).

FakeSupabase reproduit la partie du query builder postgrest utilisée par les repositories:
table/select/eq/neq/in_/is_/or_/order/limit/single/insert/update/delete/execute.
Les filtres suivent la sémantique SQL (NULL ne correspond ni à eq ni à neq).
"""
import itertools
import json
import uuid
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx

from storefront.payments.signature import compute_signature

_clock = itertools.count(1)

SERVER_KEY = "test-server-key"


def _match_eq(row, col, value) -> bool:
    return row.get(col) is not None and str(row.get(col)) == str(value)


def _match_neq(row, col, value) -> bool:
    return row.get(col) is not None and str(row.get(col)) != str(value)


def _match_is(row, col, value) -> bool:
    if str(value).lower() == "null":
        return row.get(col) is None
    return str(row.get(col)).lower() == str(value).lower()


def _parse_or(expr: str) -> Callable[[Dict[str, Any]], bool]:
    clauses = []
    for part in expr.split(","):
        col, op, value = part.split(".", 2)
        clauses.append((col, op, value))

    def _pred(row):
        for col, op, value in clauses:
            if op == "eq" and _match_eq(row, col, value):
                return True
            if op == "neq" and _match_neq(row, col, value):
                return True
            if op == "is" and _match_is(row, col, value):
                return True
        return False
    return _pred


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._order: Optional[Tuple[str, bool]] = None
        self._limit: Optional[int] = None
        self._single = False

    # --- opérations
    def select(self, *_fields, **_kw):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, changes):
        self.op, self.payload = "update", dict(changes)
        return self

    def delete(self):
        self.op = "delete"
        return self

    # --- filtres
    def eq(self, col, value):
        self.filters.append(lambda r: _match_eq(r, col, value))
        return self

    def neq(self, col, value):
        self.filters.append(lambda r: _match_neq(r, col, value))
        return self

    def in_(self, col, values):
        allowed = {str(v) for v in values}
        self.filters.append(lambda r: r.get(col) is not None and str(r.get(col)) in allowed)
        return self

    def is_(self, col, value):
        self.filters.append(lambda r: _match_is(r, col, value))
        return self

    def or_(self, expr):
        self.filters.append(_parse_or(expr))
        return self

    def order(self, col, desc=False):
        self._order = (col, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def single(self):
        self._single = True
        return self

    # --- exécution
    def _matching(self) -> List[Dict[str, Any]]:
        rows = self.db.tables.setdefault(self.table_name, [])
        return [r for r in rows if all(f(r) for f in self.filters)]

    def execute(self):
        self.db.calls.append((self.table_name, self.op))
        if (self.table_name, self.op) in self.db.fail_on:
            raise RuntimeError(f"simulated failure on {self.op} {self.table_name}")
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.op == "insert":
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = []
            for item in items:
                row = {"id": str(uuid.uuid4()), "created_at": f"2026-01-01T00:00:{next(_clock):06d}", **dict(item)}
                rows.append(row)
                created.append(dict(row))
            return SimpleNamespace(data=created)

        matched = self._matching()
        if self.op == "update":
            for row in matched:
                row.update(self.payload)
            return SimpleNamespace(data=[dict(r) for r in matched])
        if self.op == "delete":
            for row in matched:
                rows.remove(row)
            return SimpleNamespace(data=[dict(r) for r in matched])

        if self._order:
            col, desc = self._order
            matched = sorted(matched, key=lambda r: str(r.get(col) or ""), reverse=desc)
        if self._limit is not None:
            matched = matched[: self._limit]
        data = [dict(r) for r in matched]
        if self._single:
            if len(data) != 1:
                raise RuntimeError("JSON object requested, multiple (or no) rows returned")
            return SimpleNamespace(data=data[0])
        return SimpleNamespace(data=data)


class FakeSupabase:
    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_on: Set[Tuple[str, str]] = set()
        self.postgrest = SimpleNamespace(auth=lambda token: None)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def seed(self, table: str, *rows: Dict[str, Any]) -> List[Dict[str, Any]]:
        stored = []
        for row in rows:
            row = {"created_at": f"2026-01-01T00:00:{next(_clock):06d}", **row}
            row.setdefault("id", str(uuid.uuid4()))
            self.tables.setdefault(table, []).append(row)
            stored.append(row)
        return stored

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.get(table, [])

    def find(self, table: str, **where) -> Optional[Dict[str, Any]]:
        for row in self.rows(table):
            if all(str(row.get(k)) == str(v) for k, v in where.items()):
                return row
        return None

    def writes(self, table: str) -> List[str]:
        return [op for t, op in self.calls if t == table and op in ("insert", "update", "delete")]


class FakePayTabs:
    """
    Serveur PayTabs scripté:
    - statuses[tran_ref] = "A" | "D" | ... | None (pas de payment_result)
    - carts[tran_ref] = cart_id renvoyé par /payment/query
    - fail_with: exception httpx levée à chaque appel (ex: httpx.ConnectTimeout)
    """

    def __init__(self):
        self.statuses: Dict[str, Optional[str]] = {}
        self.carts: Dict[str, str] = {}
        self.requests: List[Tuple[str, Dict[str, Any], httpx.Headers]] = []
        self.fail_with: Optional[Exception] = None
        self.next_tran_ref = "TST2600000001"
        self.http_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append((request.url.path, body, request.headers))
        if self.fail_with is not None:
            raise self.fail_with
        if self.http_status != 200:
            return httpx.Response(self.http_status, json={"code": self.http_status, "message": "error"})

        if request.url.path == "/payment/request":
            ref = self.next_tran_ref
            self.carts[ref] = body.get("cart_id")
            self.statuses.setdefault(ref, None)
            return httpx.Response(200, json={
                "tran_ref": ref,
                "cart_id": body.get("cart_id"),
                "redirect_url": f"https://secure-oman.paytabs.com/payment/page/{ref}",
            })

        if request.url.path == "/payment/query":
            ref = body.get("tran_ref")
            data: Dict[str, Any] = {"tran_ref": ref, "cart_id": self.carts.get(ref)}
            status = self.statuses.get(ref)
            if status:
                data["payment_result"] = {"response_status": status, "response_message": "Authorised" if status == "A" else "Declined"}
            return httpx.Response(200, json=data)

        return httpx.Response(404, json={"message": "not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def query_count(self) -> int:
        return sum(1 for path, _, _ in self.requests if path == "/payment/query")


def signed_payload(fields: Dict[str, Any], secret: str) -> Dict[str, Any]:
    return {**fields, "signature": compute_signature(fields, secret)}
