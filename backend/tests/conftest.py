from __future__ import annotations

import copy
import re
import sys
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure `backend/` is on sys.path so `import app.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))


_SET_ADD = re.compile(r"^(?P<attr>[#\w]+)\s*\+\s*(?P<val>:\w+)$")
_FN_CLAUSE = re.compile(r"^(?P<fn>attribute_exists|attribute_not_exists)\((?P<attr>[#\w]+)\)$")
_EQ_CLAUSE = re.compile(r"^(?P<attr>[#\w]+)\s*=\s*(?P<val>:\w+)$")


class FakeTable:
    """
    In-memory stand-in for DynamoTable.

    Stateful: evaluates the condition and update expressions the repositories
    emit (AND-joined attribute_exists / attribute_not_exists / `a = :v`, and
    `SET a = :v, b = b + :n`), so conditional writes and transactions fail the
    way DynamoDB would.
    """

    table_name = "fake-table"

    def __init__(self):
        # Keyed by (pk, sk)
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.transactions: list[list[dict[str, Any]]] = []
        # Called once before the next transaction is evaluated; lets a test
        # land a competing write between a service's read and its commit.
        self.before_next_transact: Callable[[], None] | None = None

    # --- helpers ---

    @staticmethod
    def _k(key: dict[str, Any]) -> tuple[str, str]:
        return str(key.get("pk") or ""), str(key.get("sk") or "")

    @staticmethod
    def _name(token: str, names: dict[str, str] | None) -> str:
        if token.startswith("#"):
            return (names or {})[token]
        return token

    def _check(
        self,
        current: dict[str, Any] | None,
        condition: str | None,
        names: dict[str, str] | None,
        values: dict[str, Any] | None,
    ) -> bool:
        if not condition:
            return True
        for clause in [c.strip() for c in condition.split(" AND ")]:
            m = _FN_CLAUSE.match(clause)
            if m:
                present = current is not None and self._name(m["attr"], names) in current
                if (m["fn"] == "attribute_exists") != present:
                    return False
                continue
            m = _EQ_CLAUSE.match(clause)
            if m:
                if current is None:
                    return False
                if current.get(self._name(m["attr"], names)) != (values or {})[m["val"]]:
                    return False
                continue
            raise AssertionError(f"unsupported condition clause: {clause}")
        return True

    def _apply_update(
        self,
        current: dict[str, Any],
        update_expression: str,
        names: dict[str, str] | None,
        values: dict[str, Any] | None,
    ) -> dict[str, Any]:
        assert update_expression.startswith("SET ")
        out = dict(current)
        for assign in update_expression[len("SET ") :].split(","):
            lhs, rhs = [s.strip() for s in assign.split("=", 1)]
            attr = self._name(lhs, names)
            m = _SET_ADD.match(rhs)
            if m:
                out[attr] = out.get(self._name(m["attr"], names), 0) + (values or {})[m["val"]]
            else:
                out[attr] = copy.deepcopy((values or {})[rhs])
        return out

    @staticmethod
    def _serializable(item: dict[str, Any] | None) -> None:
        # Same AttributeValue conversion boto3 applies; raises on floats.
        from app.db.dynamodb.table import _serialize_item

        _serialize_item(item or {})

    def _conflict(self, operation: str, key: dict[str, Any] | None, reasons: list[str] | None = None):
        from app.db.dynamodb.errors import DdbConflict

        return DdbConflict(
            message="DynamoDB conditional check failed",
            operation=operation,
            table_name=self.table_name,
            key=key,
            cancellation_reasons=list(reasons or []),
        )

    # --- single-item operations ---

    def get_item(self, *, key: dict[str, Any], consistent_read: bool = True) -> dict[str, Any] | None:
        it = self.items.get(self._k(key))
        return copy.deepcopy(it) if it is not None else None

    def put_item(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._serializable(item)
        self._serializable(expression_attribute_values)
        k = self._k(item)
        if not self._check(self.items.get(k), condition_expression, expression_attribute_names, expression_attribute_values):
            raise self._conflict("PutItem", {"pk": k[0], "sk": k[1]})
        self.items[k] = copy.deepcopy(item)
        return {}

    def delete_item(
        self,
        *,
        key: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        k = self._k(key)
        if not self._check(self.items.get(k), condition_expression, expression_attribute_names, expression_attribute_values):
            raise self._conflict("DeleteItem", key)
        self.items.pop(k, None)
        return {}

    def update_item(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
        return_values: str = "ALL_NEW",
    ) -> dict[str, Any] | None:
        self._serializable(expression_attribute_values)
        k = self._k(key)
        cur = self.items.get(k)
        if not self._check(cur, condition_expression, expression_attribute_names, expression_attribute_values):
            raise self._conflict("UpdateItem", key)
        new = self._apply_update(
            cur or {"pk": k[0], "sk": k[1]},
            update_expression,
            expression_attribute_names,
            expression_attribute_values,
        )
        self.items[k] = new
        return copy.deepcopy(new)

    # --- query ---

    @classmethod
    def _matches(cls, cond: Any, item: dict[str, Any]) -> bool:
        expr = cond.get_expression()
        op = expr["operator"]
        vals = expr["values"]
        if op == "AND":
            return all(cls._matches(c, item) for c in vals)
        attr, value = vals
        actual = item.get(attr.name)
        if op == "=":
            return actual == value
        if op == "begins_with":
            return isinstance(actual, str) and actual.startswith(value)
        raise AssertionError(f"unsupported key condition operator: {op}")

    def query_page(
        self,
        *,
        key_condition_expression: Any,
        index_name: str | None = None,
        limit: int = 50,
        scan_index_forward: bool = False,
        filter_expression: Any | None = None,
        next_token: str | None = None,
    ):
        from app.db.dynamodb.table import Page

        sort_attr = "gsi1sk" if index_name == "GSI1" else "sk"
        matched = [it for it in self.items.values() if self._matches(key_condition_expression, it)]
        matched.sort(key=lambda it: str(it.get(sort_attr) or ""), reverse=not scan_index_forward)
        if filter_expression is not None:
            matched = [it for it in matched if self._matches(filter_expression, it)]

        start = int(next_token or 0)
        lim = max(1, int(limit or 50))
        page = matched[start : start + lim]
        more = start + lim < len(matched)
        return Page(items=copy.deepcopy(page), next_token=str(start + lim) if more else None)

    # --- transactions ---

    def tx_put(
        self,
        *,
        item: dict[str, Any],
        condition_expression: str | None = None,
        expression_attribute_names: dict[str, str] | None = None,
        expression_attribute_values: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self._serializable(item)
        self._serializable(expression_attribute_values)
        return {
            "Item": copy.deepcopy(item),
            "ConditionExpression": condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
        }

    def tx_update(
        self,
        *,
        key: dict[str, Any],
        update_expression: str,
        expression_attribute_names: dict[str, str] | None,
        expression_attribute_values: dict[str, Any],
        condition_expression: str | None = None,
    ) -> dict[str, Any]:
        self._serializable(expression_attribute_values)
        return {
            "Key": dict(key),
            "UpdateExpression": update_expression,
            "ConditionExpression": condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
        }

    def transact_write(self, *, puts=(), updates=(), retry_policy=None) -> dict[str, Any]:
        hook, self.before_next_transact = self.before_next_transact, None
        if hook:
            hook()

        ops = [("Put", p) for p in puts] + [("Update", u) for u in updates]
        reasons: list[str] = []
        for kind, op in ops:
            key = op["Item"] if kind == "Put" else op["Key"]
            ok = self._check(
                self.items.get(self._k(key)),
                op.get("ConditionExpression"),
                op.get("ExpressionAttributeNames"),
                op.get("ExpressionAttributeValues"),
            )
            reasons.append("None" if ok else "ConditionalCheckFailed")
        if "ConditionalCheckFailed" in reasons:
            raise self._conflict("TransactWriteItems", None, reasons)

        for kind, op in ops:
            if kind == "Put":
                self.items[self._k(op["Item"])] = copy.deepcopy(op["Item"])
            else:
                k = self._k(op["Key"])
                self.items[k] = self._apply_update(
                    self.items.get(k) or {"pk": k[0], "sk": k[1]},
                    op["UpdateExpression"],
                    op.get("ExpressionAttributeNames"),
                    op.get("ExpressionAttributeValues"),
                )
        self.transactions.append([op for _, op in ops])
        return {}

    # --- test conveniences ---

    def ledger(self, proposal_id: str) -> list[dict[str, Any]]:
        """Ledger entries for a proposal, oldest first."""
        pk = f"PROPOSAL#{proposal_id}"
        entries = [it for (p, s), it in self.items.items() if p == pk and s.startswith("STATUS#")]
        return sorted(entries, key=lambda it: it["sk"])


@pytest.fixture
def fake_table(monkeypatch) -> FakeTable:
    from app.repositories.proposals import projects_repo, proposals_repo, status_history_repo

    table = FakeTable()
    for mod in (proposals_repo, projects_repo, status_history_repo):
        monkeypatch.setattr(mod, "get_main_table", lambda: table)
    return table


@pytest.fixture
def actor():
    from app.domain.proposals.models import Actor

    return Actor(user_id="user-1", company_id="company-1")


@pytest.fixture
def other_actor():
    from app.domain.proposals.models import Actor

    return Actor(user_id="user-9", company_id="company-9")


@pytest.fixture
def make_proposal(fake_table, actor):
    """Create a proposal and walk it to `status` through the lifecycle service."""
    from app.domain.proposals.models import CreateProposalRequest
    from app.services import proposal_lifecycle, proposals_service

    paths = {
        "DRAFT": [],
        "PENDING": ["PENDING"],
        "SUBMITTED": ["PENDING", "SUBMITTED"],
        "WON": ["PENDING", "SUBMITTED", "WON"],
        "LOST": ["PENDING", "SUBMITTED", "LOST"],
        "CANCELLED": ["CANCELLED"],
    }

    def _make(status: str = "DRAFT", *, title: str = "City Hall Renovation", **kw) -> dict[str, Any]:
        body = CreateProposalRequest(proposal_title=title, client_name=kw.pop("client_name", "City of Springfield"), **kw)
        item = proposals_service.create(body, actor)
        pid = item["proposalId"]
        for step in paths[status]:
            item = proposal_lifecycle.transition(pid, step, actor)
        return item

    return _make
