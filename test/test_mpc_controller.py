import math
import time

import numpy as np
import pytest

from race_planner.models import ControlPhase, Role, VehicleState, Waypoint
from race_planner.mpc_controller import CasadiQpSolver, MpcController, QpSolver


class NeverSolves(QpSolver):
    def solve(self, problem):
        return None


class SlowSolver(QpSolver):
    def solve(self, problem):
        time.sleep(0.02)
        return np.zeros(problem.q.size)


def precise_solver():
    return CasadiQpSolver('osqp', max_iter=20000, tolerance=1e-8)


def straight_path(speed=2.0, n=40, spacing=0.5):
    return [Waypoint(spacing * (i + 1), 0.0, 0.0, speed) for i in range(n)]


def test_linearization_is_exact_at_operating_point():
    mpc = MpcController(wheelbase=0.33, dt=0.05)
    x_op = np.array([1.0, -2.0, 0.7])
    u_op = np.array([0.2, 3.0])

    model = mpc.linearize(x_op, u_op)

    predicted = model.Ad @ x_op + model.Bd @ u_op + model.hd
    assert predicted == pytest.approx(x_op + 0.05 * mpc.dynamics(x_op, u_op))
    assert model.Ad.shape == (3, 3)
    assert model.Bd.shape == (3, 2)


def test_single_step_round_trip_returns_operating_input():
    mpc = MpcController(dt=0.05, horizon=1, input_weight=(0.0, 0.0), input_rate_weight=(0.0, 0.0),
                        terminal_weight=(1000.0, 1000.0, 1000.0), time_budget=0.0,
                        solver=precise_solver())
    x_op = np.array([1.0, 2.0, 0.3])
    u_op = np.array([0.1, 2.0])
    x_ref = np.vstack([x_op, x_op + mpc.dt * mpc.dynamics(x_op, u_op)])
    u_ref = u_op[None, :]

    u0 = mpc.solve(x_ref, u_ref, x_op, v_prev=2.0)

    assert u0 is not None
    assert u0 == pytest.approx(u_op, abs=1e-2)


def test_inputs_respect_steering_and_acceleration_bounds():
    mpc = MpcController(dt=0.05, horizon=8, max_steer=0.3, max_acc=2.0, time_budget=0.0,
                        solver=precise_solver())
    # reference swerving hard to the left and much faster than the car
    path = [Waypoint(0.3 * (i + 1), 0.4 * (i + 1), 0.9, 5.0) for i in range(20)]
    state = VehicleState(Role.EGO, 0.0, 0.0, 0.0, 1.0)

    command = mpc.control(path, state)

    assert command is not None
    assert abs(command.steering_angle) <= 0.3 + 1e-3
    assert abs(command.speed - 1.0) <= 2.0 * 0.05 + 1e-3


def test_tracks_straight_path():
    mpc = MpcController(horizon=10, ref_alpha=1.0, time_budget=0.0, solver=precise_solver())
    state = VehicleState(Role.EGO, 0.0, 0.0, 0.0, 2.0)

    command = mpc.control(straight_path(), state)

    assert mpc.phase == ControlPhase.APPLY
    assert command.steering_angle == pytest.approx(0.0, abs=1e-2)
    assert command.speed == pytest.approx(2.0, abs=5e-2)
    assert command.acceleration == pytest.approx((command.speed - 2.0) / mpc.dt)


def test_reference_is_resampled_along_path():
    mpc = MpcController(dt=0.05, horizon=5, ref_alpha=1.0)
    state = VehicleState(Role.EGO, 0.0, 0.0, 0.0, 0.0)

    x_ref, u_ref = mpc.build_reference(straight_path(speed=2.0), state)

    assert x_ref.shape == (6, 3)
    assert u_ref.shape == (5, 2)
    assert x_ref[:, 0] == pytest.approx([0.1 * k for k in range(6)])
    assert x_ref[:, 1] == pytest.approx(np.zeros(6))
    assert u_ref[:, 0] == pytest.approx(np.zeros(5))
    assert u_ref[:, 1] == pytest.approx(np.full(5, 2.0))


def test_reference_heading_is_unwrapped_around_current_heading():
    mpc = MpcController(dt=0.1, horizon=4, ref_alpha=1.0)
    state = VehicleState(Role.EGO, 0.0, 0.0, math.pi - 0.05, 1.0)
    path = [Waypoint(-0.5 * (i + 1), -0.01 * (i + 1), -math.pi + 0.02, 1.0) for i in range(10)]

    x_ref, _ = mpc.build_reference(path, state)

    assert np.all(np.abs(np.diff(x_ref[:, 2])) < 0.5)


def test_reference_speed_blends_waypoint_and_current_speed():
    mpc = MpcController(ref_alpha=0.3, v_min=0.5, v_max=5.0)
    state = VehicleState(Role.EGO, 0.0, 0.0, 0.0, 1.0)
    _, u_ref = mpc.build_reference(straight_path(speed=3.0), state)
    assert u_ref[0, 1] == pytest.approx(0.3 * 3.0 + 0.7 * 1.0)


def test_empty_reference_falls_back():
    mpc = MpcController()
    assert mpc.control([], VehicleState(Role.EGO)) is None
    assert mpc.phase == ControlPhase.FALLBACK


def test_unsolved_qp_falls_back():
    mpc = MpcController(solver=NeverSolves())
    assert mpc.control(straight_path(), VehicleState(Role.EGO, velocity=1.0)) is None
    assert mpc.phase == ControlPhase.FALLBACK


def test_late_solution_is_discarded():
    mpc = MpcController(time_budget=0.001, solver=SlowSolver())
    assert mpc.control(straight_path(), VehicleState(Role.EGO, velocity=1.0)) is None
    assert mpc.phase == ControlPhase.FALLBACK
    assert mpc.last_solve_time > 0.001


def test_corridor_rows_added_when_enabled():
    state = VehicleState(Role.EGO, 0.0, 0.0, 0.0, 1.0)
    plain = MpcController(horizon=4)
    boxed = MpcController(horizon=4, corridor_width=0.3)

    def rows(mpc):
        x_ref, u_ref = mpc.build_reference(straight_path(), state)
        models = [mpc.linearize(x_ref[k], u_ref[k]) for k in range(mpc.N)]
        return mpc.build_qp(x_ref, u_ref, state.as_array(), state.velocity, models).A.shape[0]

    assert rows(boxed) - rows(plain) == 2 * 4


@pytest.mark.parametrize("measured", [5.6, 7.0, -0.6])
def test_measured_speed_outside_box_stays_solvable(measured):
    mpc = MpcController(v_max=5.0, max_acc=9.51, dt=0.05, time_budget=0.0, solver=precise_solver())
    state = VehicleState(Role.EGO, 0.0, 0.0, 0.0, measured)

    command = mpc.control(straight_path(speed=7.0), state)

    assert command is not None
    assert mpc.phase == ControlPhase.APPLY
    assert 0.0 - 1e-3 <= command.speed <= 5.0 + 1e-3


def test_solver_is_built_once_per_problem_shape():
    solver = precise_solver()
    mpc = MpcController(horizon=6, time_budget=0.0, solver=solver)

    assert mpc.control(straight_path(), VehicleState(Role.EGO, velocity=1.0)) is not None
    built = solver._solver
    # heading 0 leaves sin terms at zero, a diagonal path fills them in
    diagonal = [Waypoint(0.3 * (i + 1), 0.3 * (i + 1), math.pi / 4, 2.0) for i in range(20)]
    assert mpc.control(diagonal, VehicleState(Role.EGO, 0.0, 0.0, math.pi / 4, 1.0)) is not None
    assert solver._solver is built


def test_qp_solver_interface_is_abstract():
    with pytest.raises(TypeError):
        QpSolver()


class PhaseRecorder:
    def __init__(self):
        self.messages = []

    def debug(self, msg):
        self.messages.append(msg)

    def info(self, msg):
        pass

    def warning(self, msg):
        pass


def test_every_cycle_starts_idle():
    logger = PhaseRecorder()
    mpc = MpcController(time_budget=0.0, solver=precise_solver(), logger=logger)

    mpc.control(straight_path(), VehicleState(Role.EGO, velocity=1.0))
    mpc.control([], VehicleState(Role.EGO))

    phases = [m.split()[-1] for m in logger.messages if m.startswith("MPC phase")]
    assert phases == ['IDLE', 'BUILD_REFERENCE', 'LINEARIZE', 'SOLVE', 'APPLY',
                      'IDLE', 'BUILD_REFERENCE', 'FALLBACK']
