"""Component health checks behind the /health endpoints."""

import asyncio
import inspect
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .core.logging import get_logger
from .core.orchestrator import WorkflowOrchestrator

logger = get_logger(__name__)

HEALTHY = "healthy"
DEGRADED = "degraded"
UNHEALTHY = "unhealthy"

_SEVERITY = {HEALTHY: 0, DEGRADED: 1, UNHEALTHY: 2}

CheckResult = Union[Dict[str, Any], str, None]
CheckFunc = Callable[[], Union[CheckResult, Awaitable[CheckResult]]]


def worst_status(statuses) -> str:
    """Most severe of the given statuses; unknown values count as unhealthy."""
    worst = HEALTHY
    for status in statuses:
        if _SEVERITY.get(status, 2) > _SEVERITY[worst]:
            worst = status if status in _SEVERITY else UNHEALTHY
    return worst


class ComponentHealthChecker:
    """
    Runs named component checks concurrently, each under its own timeout.

    A check may be sync or async. Sync checks run in a worker thread so a
    slow one cannot stall the event loop and still honors its timeout. A
    check reports its state through a ``status`` key (healthy, degraded or
    unhealthy); a check that returns nothing else counts as healthy.
    """

    def __init__(self, default_timeout: float = 5.0):
        self.default_timeout = default_timeout
        self._checks: Dict[str, Dict[str, Any]] = {}

    def register_check(self, name: str, check: CheckFunc, timeout: Optional[float] = None) -> None:
        self._checks[name] = {"func": check, "timeout": timeout or self.default_timeout}
        logger.debug(f"Registered health check: {name}")

    async def run_check(self, name: str) -> Dict[str, Any]:
        """Run one check; unknown names report unhealthy."""
        registered = self._checks.get(name)
        if registered is None:
            return {"status": UNHEALTHY, "message": f"No health check named '{name}'"}

        func, timeout = registered["func"], registered["timeout"]
        started = time.perf_counter()
        try:
            if inspect.iscoroutinefunction(func):
                outcome = await asyncio.wait_for(func(), timeout=timeout)
            else:
                outcome = await asyncio.wait_for(asyncio.to_thread(func), timeout=timeout)
            result = self._normalize(outcome)
        except asyncio.TimeoutError:
            result = {"status": UNHEALTHY, "message": f"Timed out after {timeout}s", "timed_out": True}
        except Exception as e:
            logger.warning(f"Health check {name} raised {type(e).__name__}: {e}")
            result = {"status": UNHEALTHY, "message": str(e), "error_type": type(e).__name__}

        result["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
        if result["status"] != HEALTHY:
            logger.warning(f"Health check {name} reported {result['status']}")
        return result

    async def run_all_checks(self) -> Dict[str, Any]:
        names = list(self._checks)
        results = await asyncio.gather(*(self.run_check(name) for name in names))
        checks = dict(zip(names, results))
        return {
            "overall_status": worst_status(result["status"] for result in checks.values()),
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        }

    @staticmethod
    def _normalize(outcome: CheckResult) -> Dict[str, Any]:
        if isinstance(outcome, dict):
            result = dict(outcome)
            result.setdefault("status", HEALTHY)
            return result
        if isinstance(outcome, str):
            return {"status": HEALTHY, "message": outcome}
        return {"status": HEALTHY}


def register_orchestrator_checks(
    checker: ComponentHealthChecker,
    orchestrator: WorkflowOrchestrator,
    timeout: Optional[float] = None
) -> None:
    """Register the orchestrator, state store, capability and breaker checks."""

    async def check_state_store():
        return await orchestrator.state_store.health_check()

    def check_capabilities():
        agents = orchestrator.capabilities.list_agents()
        return {
            "status": HEALTHY if agents else DEGRADED,
            "registered_agents": len(agents),
            "registered_capabilities": sum(len(agent["capabilities"]) for agent in agents),
        }

    def check_breakers():
        # Any breaker that is not closed means some capability is being shed
        snapshot = orchestrator.breakers.snapshot()
        tripped = sorted(name for name, state in snapshot.items() if state["state"] != "closed")
        return {
            "status": DEGRADED if tripped else HEALTHY,
            "tracked": len(snapshot),
            "tripped": tripped,
        }

    checker.register_check("orchestrator", orchestrator.health_check, timeout)
    checker.register_check("state_store", check_state_store, timeout)
    checker.register_check("capabilities", check_capabilities, timeout)
    checker.register_check("circuit_breakers", check_breakers, timeout)
