#!/usr/bin/env python3
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import casadi as ca
import numpy as np

from race_planner.models import ControlPhase, DriveCommand, LinearizedDynamics, VehicleState, Waypoint

# Linearized kinematic bicycle model around a reference trajectory, solved as a
# QP every cycle. Only the first input of the horizon is applied.
#   state  x = [x, y, theta]
#   input  u = [steering, speed]

NX = 3
NU = 2


@dataclass
class QpProblem:
    """minimize 0.5 z'Pz + q'z  subject to  l <= Az <= u"""
    P: np.ndarray
    q: np.ndarray
    A: np.ndarray
    l: np.ndarray
    u: np.ndarray


class QpSolver(ABC):
    @abstractmethod
    def solve(self, problem: QpProblem) -> Optional[np.ndarray]:
        """Optimal z, or None when the problem was not solved."""


class CasadiQpSolver(QpSolver):
    """
    casadi conic interface. The solver is built once per problem shape with a
    dense pattern, so coefficients that happen to be zero in one cycle do not
    change the structure seen by the backend.
    """

    def __init__(self, plugin='osqp', max_iter=4000, tolerance=1e-5, logger=None):
        self.plugin = plugin
        self.max_iter = max_iter
        self.tolerance = tolerance
        self.logger = logger or logging.getLogger(__name__)
        self._solver = None
        self._shape = None

    def _options(self):
        opts = {'error_on_fail': False}
        if self.plugin == 'osqp':
            opts['osqp'] = {
                'max_iter': int(self.max_iter),
                'eps_abs': self.tolerance,
                'eps_rel': self.tolerance,
                'verbose': False,
            }
        elif self.plugin == 'qpoases':
            opts['printLevel'] = 'none'
            opts['nWSR'] = int(self.max_iter)
        return opts

    def _build_solver(self, shape):
        nz, nc = shape
        qp = {'h': ca.Sparsity.dense(nz, nz), 'a': ca.Sparsity.dense(nc, nz)}
        self._solver = ca.conic('mpc_qp', self.plugin, qp, self._options())
        self._shape = shape
        self.logger.info(f"Built {self.plugin} QP solver ({nz} variables, {nc} constraints)")

    def solve(self, problem: QpProblem) -> Optional[np.ndarray]:
        shape = (problem.q.size, problem.l.size)
        try:
            if self._shape != shape:
                self._build_solver(shape)
            sol = self._solver(h=ca.DM(problem.P), g=problem.q, a=ca.DM(problem.A),
                               lba=problem.l, uba=problem.u)
        except RuntimeError as e:
            self.logger.warning(f"QP solver failed: {e}")
            return None

        stats = self._solver.stats()
        if not stats.get('success', False):
            self.logger.warning(f"QP not solved: {stats.get('return_status', 'unknown')}")
            return None

        z = sol['x'].full().flatten()
        if not np.all(np.isfinite(z)):
            return None
        return z


class MpcController:

    def __init__(self, wheelbase=0.33, dt=0.05, horizon=10, max_steer=0.4, v_min=0.5, v_max=5.0,
                 max_acc=9.51, ref_alpha=0.3,
                 state_weight=(10.0, 10.0, 2.0), terminal_weight=(20.0, 20.0, 4.0),
                 input_weight=(0.1, 0.1), input_rate_weight=(1.0, 0.1),
                 corridor_width=0.0, time_budget=0.04, solver: QpSolver = None, logger=None):
        self.L = wheelbase
        self.dt = dt
        self.N = int(horizon)
        self.max_steer = max_steer
        self.v_min = v_min
        self.v_max = v_max
        self.max_acc = max_acc
        self.ref_alpha = ref_alpha
        self.Q = np.diag(state_weight)
        self.Qf = np.diag(terminal_weight)
        self.R = np.diag(input_weight)
        self.Rd = np.diag(input_rate_weight)
        self.corridor_width = corridor_width
        self.time_budget = time_budget
        self.logger = logger or logging.getLogger(__name__)
        self.solver = solver or CasadiQpSolver(logger=self.logger)

        self.phase = ControlPhase.IDLE
        self.last_solve_time = 0.0

    @classmethod
    def from_config(cls, config, solver=None, logger=None):
        solver = solver or CasadiQpSolver(config.qp_solver, config.qp_max_iter, logger=logger)
        return cls(config.wheelbase, config.dt, config.horizon, config.max_steer, config.v_min,
                   config.v_max, config.max_acc, config.ref_alpha,
                   config.state_weight, config.terminal_weight, config.input_weight,
                   config.input_rate_weight, config.corridor_width, config.qp_time_budget,
                   solver, logger)

    # ─── Model ──────────────────────────────────────────

    def dynamics(self, state, u):
        _, _, theta = state
        delta, v = u
        return np.array([v * math.cos(theta), v * math.sin(theta), v / self.L * math.tan(delta)])

    def linearize(self, x_op, u_op) -> LinearizedDynamics:
        """Euler discretization of the first-order expansion around (x_op, u_op)."""
        x_op = np.asarray(x_op, dtype=float)
        u_op = np.asarray(u_op, dtype=float)
        theta = x_op[2]
        delta, v = u_op

        A = np.array([[0.0, 0.0, -v * math.sin(theta)],
                      [0.0, 0.0, v * math.cos(theta)],
                      [0.0, 0.0, 0.0]])
        B = np.array([[0.0, math.cos(theta)],
                      [0.0, math.sin(theta)],
                      [v / (self.L * math.cos(delta) ** 2), math.tan(delta) / self.L]])

        Ad = np.eye(NX) + self.dt * A
        Bd = self.dt * B
        hd = self.dt * (self.dynamics(x_op, u_op) - A @ x_op - B @ u_op)
        return LinearizedDynamics(Ad, Bd, hd, x_op, u_op)

    # ─── Reference ──────────────────────────────────────

    def build_reference(self, waypoints: Sequence[Waypoint], state: VehicleState):
        """
        Resample [ego, waypoints...] at v_ref*dt spacing.

        Returns (x_ref (N+1, 3), u_ref (N, 2)) or None without waypoints.
        """
        if not waypoints:
            return None

        v_ref = self.ref_alpha * waypoints[0].speed + (1.0 - self.ref_alpha) * state.velocity
        v_ref = float(np.clip(v_ref, self.v_min, self.v_max))

        pts = np.array([[state.x, state.y]] + [[wp.x, wp.y] for wp in waypoints])
        d = np.diff(pts, axis=0)
        seg_len = np.hypot(d[:, 0], d[:, 1])
        seg_heading = np.arctan2(d[:, 1], d[:, 0])
        degenerate = seg_len < 1e-6
        seg_heading[degenerate] = np.array([wp.heading for wp in waypoints])[degenerate]

        s = np.concatenate([[0.0], np.cumsum(seg_len)])
        s_k = np.minimum(np.arange(self.N + 1) * v_ref * self.dt, s[-1])

        if s[-1] > 0.0:
            xr = np.interp(s_k, s, pts[:, 0])
            yr = np.interp(s_k, s, pts[:, 1])
        else:
            xr = np.full(self.N + 1, state.x)
            yr = np.full(self.N + 1, state.y)

        seg_idx = np.clip(np.searchsorted(s, s_k, side='right') - 1, 0, len(seg_len) - 1)
        theta = seg_heading[seg_idx]
        theta[0] = state.theta
        theta = np.unwrap(theta)

        delta = np.arctan(self.L * np.diff(theta) / max(v_ref * self.dt, 1e-6))
        delta = np.clip(delta, -self.max_steer, self.max_steer)

        x_ref = np.column_stack([xr, yr, theta])
        u_ref = np.column_stack([delta, np.full(self.N, v_ref)])
        return x_ref, u_ref

    # ─── QP ─────────────────────────────────────────────

    def _xi(self, k):
        return NX * k

    def _ui(self, k):
        return NX * (self.N + 1) + NU * k

    def build_qp(self, x_ref, u_ref, x0, v_prev, models: List[LinearizedDynamics]) -> QpProblem:
        N = self.N
        nz = NX * (N + 1) + NU * N
        P = np.zeros((nz, nz))
        q = np.zeros(nz)

        for k in range(N + 1):
            Qk = self.Qf if k == N else self.Q
            i = self._xi(k)
            P[i:i + NX, i:i + NX] += 2.0 * Qk
            q[i:i + NX] -= 2.0 * Qk @ x_ref[k]

        for k in range(N):
            i = self._ui(k)
            P[i:i + NU, i:i + NU] += 2.0 * self.R
            q[i:i + NU] -= 2.0 * self.R @ u_ref[k]
            if k > 0:
                j = self._ui(k - 1)
                P[i:i + NU, i:i + NU] += 2.0 * self.Rd
                P[j:j + NU, j:j + NU] += 2.0 * self.Rd
                P[i:i + NU, j:j + NU] -= 2.0 * self.Rd
                P[j:j + NU, i:i + NU] -= 2.0 * self.Rd

        rows, lower, upper = [], [], []

        def add_row(coeffs, lo, hi):
            row = np.zeros(nz)
            for idx, c in coeffs:
                row[idx] = c
            rows.append(row)
            lower.append(lo)
            upper.append(hi)

        # initial state
        for n in range(NX):
            add_row([(self._xi(0) + n, 1.0)], x0[n], x0[n])

        # x_{k+1} - Ad x_k - Bd u_k = hd
        for k, model in enumerate(models):
            for n in range(NX):
                coeffs = [(self._xi(k + 1) + n, 1.0)]
                coeffs += [(self._xi(k) + m, -model.Ad[n, m]) for m in range(NX)]
                coeffs += [(self._ui(k) + m, -model.Bd[n, m]) for m in range(NU)]
                add_row(coeffs, model.hd[n], model.hd[n])

        dv = self.max_acc * self.dt
        for k in range(N):
            i = self._ui(k)
            add_row([(i, 1.0)], -self.max_steer, self.max_steer)
            add_row([(i + 1, 1.0)], 0.0, self.v_max)
            if k == 0:
                v_start = min(max(v_prev, 0.0), self.v_max)
                add_row([(i + 1, 1.0)], v_start - dv, v_start + dv)
            else:
                add_row([(i + 1, 1.0), (self._ui(k - 1) + 1, -1.0)], -dv, dv)

        if self.corridor_width > 0.0:
            w = self.corridor_width
            for k in range(1, N + 1):
                i = self._xi(k)
                add_row([(i, 1.0)], x_ref[k, 0] - w, x_ref[k, 0] + w)
                add_row([(i + 1, 1.0)], x_ref[k, 1] - w, x_ref[k, 1] + w)

        return QpProblem(P, q, np.array(rows), np.array(lower), np.array(upper))

    def _enter(self, phase: ControlPhase):
        self.phase = phase
        self.logger.debug(f"MPC phase {phase.name}")

    def solve(self, x_ref, u_ref, x0, v_prev) -> Optional[np.ndarray]:
        """
        First-stage input [steering, speed] or None when infeasible or late.
        `v_prev` outside `[0, v_max]` is clipped into it before the first-step
        acceleration bound is applied.
        """
        self._enter(ControlPhase.LINEARIZE)
        models = [self.linearize(x_ref[k], u_ref[k]) for k in range(self.N)]
        problem = self.build_qp(x_ref, u_ref, np.asarray(x0, dtype=float), v_prev, models)

        self._enter(ControlPhase.SOLVE)
        start = time.monotonic()
        z = self.solver.solve(problem)
        self.last_solve_time = time.monotonic() - start

        if z is None:
            return None
        if self.time_budget and self.last_solve_time > self.time_budget:
            self.logger.warning(
                f"QP took {self.last_solve_time * 1e3:.1f} ms (budget {self.time_budget * 1e3:.1f} ms), discarding")
            return None
        i = self._ui(0)
        return z[i:i + NU]

    def control(self, reference_waypoints: Sequence[Waypoint], state: VehicleState) -> Optional[DriveCommand]:
        self._enter(ControlPhase.IDLE)
        self._enter(ControlPhase.BUILD_REFERENCE)
        reference = self.build_reference(reference_waypoints, state)
        if reference is None:
            self._enter(ControlPhase.FALLBACK)
            return None

        x_ref, u_ref = reference
        u0 = self.solve(x_ref, u_ref, state.as_array(), state.velocity)
        if u0 is None:
            self._enter(ControlPhase.FALLBACK)
            return None

        self._enter(ControlPhase.APPLY)
        steer, speed = float(u0[0]), float(u0[1])
        return DriveCommand(steer, speed, (speed - state.velocity) / self.dt)
