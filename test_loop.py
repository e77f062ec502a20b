"""Loop controller state machine."""

import pytest

from agent.loop import LoopController, LoopPhase, LoopStateError


def test_starts_idle():
    """A new controller is idle and will not loop."""
    controller = LoopController(max_iterations=3)
    assert controller.phase == LoopPhase.IDLE
    assert not controller.should_continue_loop()


def test_runs_until_ceiling():
    """should_continue_loop() turns false at the ceiling."""
    controller = LoopController(max_iterations=3)
    controller.set_active(True)
    seen = []
    while controller.should_continue_loop():
        seen.append(controller.increment_iteration())
    assert seen == [1, 2, 3]
    assert controller.ceiling_reached
    assert not controller.should_continue_loop()


def test_completion_stops_loop():
    """Completion implies not active and stops the loop."""
    controller = LoopController(max_iterations=30)
    controller.set_active(True)
    controller.increment_iteration()
    controller.mark_task_completed()
    assert controller.task_completed
    assert not controller.is_active
    assert controller.phase == LoopPhase.COMPLETED
    assert not controller.should_continue_loop()


def test_completed_cannot_be_reactivated():
    """Re-activating a completed loop needs reset()."""
    controller = LoopController()
    controller.set_active(True)
    controller.mark_task_completed()
    with pytest.raises(LoopStateError):
        controller.set_active(True)
    controller.reset()
    controller.set_active(True)
    assert controller.phase == LoopPhase.ACTIVE


def test_increment_requires_active():
    """Iterations only count while active."""
    controller = LoopController()
    with pytest.raises(LoopStateError):
        controller.increment_iteration()


def test_reset_is_idempotent():
    """reset() twice leaves the same state as once."""
    controller = LoopController(max_iterations=5)
    controller.set_active(True)
    controller.increment_iteration()
    controller.mark_task_completed()
    controller.reset()
    once = controller.state
    controller.reset()
    assert controller.state == once
    assert once.iteration == 0 and not once.active and not once.completed


def test_default_ceiling_from_config():
    """The default ceiling comes from MAX_LOOP_ITERATIONS."""
    from config import app_config
    assert LoopController().max_iterations == app_config.max_loop_iterations
