"""
Tests for the errors module.
"""

from brokerage_graph.errors import (
    AcceptanceError,
    BrokerageGraphError,
    ClientError,
    CycleNotSharedError,
    NotFoundError,
    PartialSuccessResult,
    PipelineError,
    RollbackError,
    StoreError,
    StoreReadError,
    StoreWriteError,
    ValidationError,
    wrap_store_error,
)


class TestErrorHierarchy:
    """Test error class hierarchy."""

    def test_base_error_with_context(self):
        """Context is kept and rendered into str()."""
        error = BrokerageGraphError("Something went wrong", context={"offer_id": "offer_1"})

        assert error.message == "Something went wrong"
        assert error.context == {"offer_id": "offer_1"}
        assert str(error) == "Something went wrong | context={'offer_id': 'offer_1'}"

    def test_base_error_without_context(self):
        error = BrokerageGraphError("Simple error")

        assert error.context == {}
        assert str(error) == "Simple error"

    def test_pipeline_error_inheritance(self):
        assert isinstance(ValidationError("bad"), PipelineError)
        assert isinstance(NotFoundError("missing"), PipelineError)
        assert isinstance(AcceptanceError("failed"), BrokerageGraphError)

    def test_rollback_error_is_an_acceptance_error(self):
        assert isinstance(RollbackError("restore failed"), AcceptanceError)

    def test_cycle_not_shared_is_a_validation_error(self):
        """Callers handling ValidationError also catch the not-shared case."""
        assert isinstance(CycleNotSharedError("not shared"), ValidationError)

    def test_store_errors_are_client_errors(self):
        assert isinstance(StoreReadError("read"), StoreError)
        assert isinstance(StoreWriteError("write"), ClientError)


class TestErrorWrapping:
    """Test wrap_store_error classification."""

    def test_wrap_decode_error_as_read_error(self):
        wrapped = wrap_store_error(ValueError("Expecting value"), {"key": "deals"})

        assert isinstance(wrapped, StoreReadError)
        assert wrapped.context["key"] == "deals"
        assert wrapped.context["error_type"] == "ValueError"

    def test_wrap_write_failure(self):
        wrapped = wrap_store_error(OSError("disk full"), {"key": "deals"}, writing=True)

        assert isinstance(wrapped, StoreWriteError)
        assert "disk full" in wrapped.message

    def test_wrap_unknown_error(self):
        wrapped = wrap_store_error(RuntimeError("boom"))

        assert type(wrapped) is StoreError

    def test_store_errors_pass_through(self):
        original = StoreReadError("already typed")
        assert wrap_store_error(original) is original

    def test_context_not_mutated(self):
        ctx = {"key": "deals"}
        wrap_store_error(ValueError("x"), ctx)
        assert ctx == {"key": "deals"}


class TestPartialSuccessResult:
    """Test partial success handling."""

    def test_empty_result(self):
        result = PartialSuccessResult()

        assert result.total_count == 0
        assert result.all_succeeded is True
        assert result.partial_success is False

    def test_partial_success(self):
        result = PartialSuccessResult()
        result.add_success(item_id="match_1")
        result.add_failure(ValidationError("Failed"), item_id="match_2")

        assert result.success_count == 1
        assert result.failure_count == 1
        assert result.partial_success is True

    def test_to_dict(self):
        result = PartialSuccessResult()
        result.add_success(item_id="match_1")
        result.add_failure(ValidationError("Bad input"), item_id="match_2")

        data = result.to_dict()

        assert data["succeeded_ids"] == ["match_1"]
        assert data["failed_ids"] == ["match_2"]
        assert data["errors"] == [{"item_id": "match_2", "error": "Bad input"}]
