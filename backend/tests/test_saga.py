"""Unit tests for the Saga runner"""

import pytest

from print_agent.result import Err, ErrorKind, Ok
from print_agent.services.saga import Saga


def recorder(log, name, result=None):
    async def _step():
        log.append(name)
        return result if result is not None else Ok(name)
    return _step


class TestSaga:
    @pytest.mark.asyncio
    async def test_all_steps_run_in_order(self):
        log = []
        saga = Saga("demo").add("a", recorder(log, "a")).add("b", recorder(log, "b"))

        outcome = await saga.run()

        assert outcome.ok
        assert log == ["a", "b"]
        assert outcome.values == {"a": "a", "b": "b"}

    @pytest.mark.asyncio
    async def test_failure_compensates_completed_steps_in_reverse(self):
        log = []
        saga = (
            Saga("demo")
            .add("a", recorder(log, "a"), recorder(log, "undo-a"))
            .add("b", recorder(log, "b"), recorder(log, "undo-b"))
            .add("c", recorder(log, "c", Err(ErrorKind.STORE, "insert failed")), recorder(log, "undo-c"))
            .add("d", recorder(log, "d"))
        )

        outcome = await saga.run()

        assert not outcome.ok
        assert outcome.failed_step == "c"
        assert outcome.error.kind == ErrorKind.STORE
        assert log == ["a", "b", "c", "undo-b", "undo-a"]
        assert outcome.compensated == ["b", "a"]

    @pytest.mark.asyncio
    async def test_exception_becomes_internal_error(self):
        async def explode():
            raise RuntimeError("disk on fire")

        outcome = await Saga("demo").add("boom", explode).run()

        assert not outcome.ok
        assert outcome.error.kind == ErrorKind.INTERNAL
        assert "disk on fire" in outcome.error.detail

    @pytest.mark.asyncio
    async def test_step_without_rollback_leaves_earlier_steps(self):
        log = []
        saga = (
            Saga("demo")
            .add("configure", recorder(log, "configure"), recorder(log, "undo-configure"))
            .add("store", recorder(log, "store", Err(ErrorKind.STORE)), rollback_on_failure=False)
        )

        outcome = await saga.run()

        assert outcome.failed_step == "store"
        assert "undo-configure" not in log
        assert outcome.compensated == []

    @pytest.mark.asyncio
    async def test_compensation_failure_is_reported_not_raised(self):
        async def bad_undo():
            raise RuntimeError("cannot undo")

        log = []
        saga = (
            Saga("demo")
            .add("a", recorder(log, "a"), bad_undo)
            .add("b", recorder(log, "b", Err(ErrorKind.ADAPTER, "nope")))
        )

        outcome = await saga.run()

        assert not outcome.ok
        assert outcome.compensated == []
        assert outcome.compensation_errors == ["a: cannot undo"]
