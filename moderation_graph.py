import logging
from datetime import datetime
from typing import Dict, Optional, TypedDict

from langgraph.graph import StateGraph, END

from errors import ModerationError, TransactionNotFoundError, VerdictParseError, require
from enforcement import EnforcementDispatcher
from models import ModerationRecord, ModerationStatus, ModerationTransaction, ReviewStatus
from providers import ModerationProvider
from severity import ENFORCEABLE
from stores import ModerationStore, TransactionStore

logger = logging.getLogger(__name__)


class ReviewState(TypedDict, total=False):
    handle: str
    raw_response: str
    provider: ModerationProvider
    transaction: ModerationTransaction
    record: Optional[ModerationRecord]
    severity: Optional[ReviewStatus]
    outcome: Optional[ModerationStatus]


class ReviewResultProcessor:
    """
    Turns a provider response into enforcement.

    record_response -> interpret_verdict -> enforce -> finalize

    A provider failure or an unreadable verdict skips enforcement and marks
    the moderation record failed. A verdict the severity guard blocks still
    completes the record.
    """

    def __init__(
        self,
        transactions: TransactionStore,
        records: ModerationStore,
        dispatcher: EnforcementDispatcher,
        providers: Dict[str, ModerationProvider],
    ):
        self.transactions = transactions
        self.records = records
        self.dispatcher = dispatcher
        self.providers = providers
        self.graph = self._build_graph()

    def _build_graph(self):
        workflow = StateGraph(ReviewState)

        # Add nodes
        workflow.add_node("record_response", self.record_response)
        workflow.add_node("interpret_verdict", self.interpret_verdict)
        workflow.add_node("enforce", self.enforce)
        workflow.add_node("finalize", self.finalize)

        # Set entry point
        workflow.set_entry_point("record_response")

        # Add edges
        workflow.add_conditional_edges(
            "record_response",
            self.route_after_record,
            {
                "interpret": "interpret_verdict",
                "end": END
            }
        )
        workflow.add_conditional_edges(
            "interpret_verdict",
            self.route_after_verdict,
            {
                "enforce": "enforce",
                "finalize": "finalize"
            }
        )
        workflow.add_edge("enforce", "finalize")
        workflow.add_edge("finalize", END)

        return workflow.compile()

    async def record_response(self, state: ReviewState) -> Dict:
        """Store the response on the transaction and load the lookup record"""
        handle = state["handle"]
        transaction = state["transaction"]

        await self.transactions.update_transaction_response(handle, datetime.utcnow(), state["raw_response"])

        record = await self.records.query_moderation(transaction.app_handle, handle)
        if record is None:
            logger.error(f"No moderation record for handle {handle} in app {transaction.app_handle}")
        return {"record": record}

    def route_after_record(self, state: ReviewState) -> str:
        return "interpret" if state.get("record") is not None else "end"

    async def interpret_verdict(self, state: ReviewState) -> Dict:
        handle = state["handle"]
        provider = state["provider"]

        try:
            verdict = await provider.interpret(state["raw_response"])
        except VerdictParseError as e:
            logger.error(f"Could not read {provider.name} verdict for moderation handle {handle}: {e}")
            return {"outcome": ModerationStatus.FAILED}
        except Exception:
            logger.exception(f"Unexpected error reading {provider.name} verdict for moderation handle {handle}")
            return {"outcome": ModerationStatus.FAILED}

        if verdict.failed:
            logger.error(f"{provider.name} review failed for moderation handle {handle}")
            return {"outcome": ModerationStatus.FAILED}

        if verdict.severity not in ENFORCEABLE:
            logger.error(f"Inconclusive moderation result = {verdict.severity} for moderation handle {handle}")
            return {"outcome": ModerationStatus.FAILED}

        return {"severity": verdict.severity}

    def route_after_verdict(self, state: ReviewState) -> str:
        if state.get("outcome") == ModerationStatus.FAILED:
            return "finalize"
        return "enforce"

    async def enforce(self, state: ReviewState) -> Dict:
        handle = state["handle"]
        try:
            await self.dispatcher.enforce(state["transaction"].kind, state["record"], state["severity"])
        except ModerationError as e:
            logger.error(f"Cannot enforce moderation handle {handle}: {e}")
            return {"outcome": ModerationStatus.FAILED}
        except Exception:
            logger.exception(f"Enforcement failed for moderation handle {handle}")
            return {"outcome": ModerationStatus.FAILED}
        return {"outcome": ModerationStatus.COMPLETED}

    async def finalize(self, state: ReviewState) -> Dict:
        record = state["record"]
        await self.records.update_moderation_status(record.app_handle, record.handle, state["outcome"])
        return {"outcome": state["outcome"]}

    async def process(self, handle: str, raw_response: str) -> Optional[ModerationStatus]:
        """
        Process one provider response for `handle`.

        Raises TransactionNotFoundError for handles we never submitted; every
        other problem is logged and recorded on the moderation record.
        Returns the final moderation status, or None if there was no record.
        """
        require(handle, "handle")
        if raw_response is None:
            raise ValueError("raw_response is required")

        transaction = await self.transactions.query_transaction(handle)
        if transaction is None or transaction.handle != handle:
            raise TransactionNotFoundError(handle)

        if transaction.response_body is not None:
            logger.info(f"Moderation {handle} already carries a response; overwriting it")

        provider = self.providers.get(transaction.provider)
        if provider is None:
            logger.error(f"Moderation {handle} was submitted to unknown provider {transaction.provider!r}")
            record = await self.records.query_moderation(transaction.app_handle, handle)
            if record is not None:
                await self.records.update_moderation_status(record.app_handle, handle, ModerationStatus.FAILED)
                return ModerationStatus.FAILED
            return None

        result = await self.graph.ainvoke({
            "handle": handle,
            "raw_response": raw_response,
            "provider": provider,
            "transaction": transaction,
        })
        return result.get("outcome")
