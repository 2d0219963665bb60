################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Filter orchestrating residuals, timelines and the predict/update cycle.

Lifecycle:
    add_residual() ... -> init(t0) -> add_measurement() / update() ...

Each update():
    1. Asks every timeline how far it can safely advance at the clock's now
    2. Takes the minimum of those and the target time as the horizon
    3. Collects evaluation times in (processed, horizon]: every measurement
       time of observing residuals, only the last one of summarizing
       (mergeable transition) residuals
    4. For each time in increasing order, realigns transition measurements
       with merge/split, then predicts and updates
    5. Advances every timeline to the horizon

The state estimate carries the time of the last evaluation, which can be
earlier than the horizon when no measurement fell between them.

Predict step at time t, from the estimate at t_prev with dt = t - t_prev:
    - Active predictions write their state elements
    - Active binary residuals whose current elements nothing else drives are
      solved for those elements (implicit prediction)
    - All remaining elements follow a random walk

Update step at time t:
    All other active binary residuals and unary updates are stacked and fused
    against the joint covariance of the previous and the predicted state,

        P_joint = [[P,   P Fᵀ        ],
                   [F P, F P Fᵀ + Q  ]]

    and only the current block is kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping
from typing import Optional
from typing import Union

import numpy as np
from numpy.typing import NDArray

from oasis_estimation.config.filter_params import FilterParams
from oasis_estimation.config.filter_params import TimelineParams
from oasis_estimation.elements.element_vector import ElementVector
from oasis_estimation.elements.element_vector import ElementVectorDefinition
from oasis_estimation.filter.update_step import UpdateResult
from oasis_estimation.filter.update_step import UpdateStep
from oasis_estimation.math_utils.covariance import Covariance
from oasis_estimation.math_utils.covariance import CovarianceError
from oasis_estimation.math_utils.linalg import Linalg
from oasis_estimation.model.residual import VERIFY_DT_SEC
from oasis_estimation.model.residual import Linearization
from oasis_estimation.model.residual import Prediction
from oasis_estimation.model.residual import Residual
from oasis_estimation.model.verification import JacobianCheck
from oasis_estimation.timing.measurement_timeline import MeasurementTimeline
from oasis_estimation.timing.time_base import Clock
from oasis_estimation.timing.time_base import MonotonicClock
from oasis_estimation.timing.time_base import ns_to_sec


_LOG: logging.Logger = logging.getLogger(__name__)


class FilterError(Exception):
    """Raised when the filter receives invalid residuals or measurements."""


class FilterStateError(Exception):
    """Raised when a filter operation is called in the wrong state."""


@dataclass(frozen=True)
class FilterUpdateReport:
    """Summary of one update() call.

    Attributes:
        horizon_ns: Time every timeline was advanced to
        processed_times_ns: Evaluation times in processing order
        accepted_updates: Number of accepted measurement updates
        rejected_updates: Number of rejected measurement updates
    """

    horizon_ns: int
    processed_times_ns: tuple[int, ...]
    accepted_updates: int
    rejected_updates: int


@dataclass(frozen=True)
class _Propagation:
    """Predicted state and its linearized transition."""

    state: ElementVector
    F: NDArray[np.float64]
    Q: NDArray[np.float64]
    consumed: frozenset[int]


class Filter:
    """Multi-rate filter over a composite manifold state."""

    def __init__(
        self, params: Optional[FilterParams] = None, clock: Optional[Clock] = None
    ) -> None:
        self._params: FilterParams = (
            params if params is not None else FilterParams.defaults()
        )
        self._params.validate()
        self._clock: Clock = clock if clock is not None else MonotonicClock()
        self._update_step: UpdateStep = UpdateStep(self._params.update.cholesky_jitter)

        self._state_definition: ElementVectorDefinition = ElementVectorDefinition()
        self._residuals: list[Residual] = []
        self._timelines: list[MeasurementTimeline] = []

        self._state: Optional[ElementVector] = None
        self._covariance: Optional[NDArray[np.float64]] = None
        self._state_time_ns: Optional[int] = None
        self._processed_ns: Optional[int] = None
        self._last_report: Optional[FilterUpdateReport] = None

    @property
    def params(self) -> FilterParams:
        return self._params

    @property
    def state_definition(self) -> ElementVectorDefinition:
        return self._state_definition

    @property
    def initialized(self) -> bool:
        return self._state is not None

    @property
    def state(self) -> ElementVector:
        """Copy of the current estimate."""
        return self._require_state().copy()

    @property
    def covariance(self) -> NDArray[np.float64]:
        """Copy of the current covariance over the state tangent."""
        self._require_state()
        assert self._covariance is not None
        return self._covariance.copy()

    @property
    def time_ns(self) -> int:
        """Time of the current estimate."""
        self._require_state()
        assert self._state_time_ns is not None
        return self._state_time_ns

    @property
    def processed_time_ns(self) -> int:
        """Horizon reached by the last update."""
        self._require_state()
        assert self._processed_ns is not None
        return self._processed_ns

    @property
    def last_report(self) -> Optional[FilterUpdateReport]:
        return self._last_report

    def num_residuals(self) -> int:
        return len(self._residuals)

    def residual(self, index: int) -> Residual:
        self._check_index(index)
        return self._residuals[index]

    def timeline(self, index: int) -> MeasurementTimeline:
        self._check_index(index)
        return self._timelines[index]

    def last_processed_time(self, index: int) -> Optional[int]:
        return self.timeline(index).last_processed_time

    def add_residual(
        self, residual: Residual, timeline_params: Optional[TimelineParams] = None
    ) -> int:
        """Register a residual and merge its state elements.

        Returns:
            Stable index used to address the residual's measurements
        """
        if self._state is not None:
            raise FilterStateError("residuals must be added before init()")
        if not isinstance(residual, Residual):
            raise FilterError(f"not a residual: {type(residual).__name__}")
        if isinstance(residual, Prediction):
            predicted: set[str] = set(residual.cur_definition.names())
            for other in self._residuals:
                if not isinstance(other, Prediction):
                    continue
                shared: set[str] = predicted & set(other.cur_definition.names())
                if shared:
                    raise FilterError(
                        f"{residual.name} and {other.name} both predict "
                        f"{sorted(shared)}"
                    )

        policy: TimelineParams = (
            timeline_params if timeline_params is not None else self._params.timeline
        )
        policy.validate()

        self._state_definition = self._state_definition.merged(
            residual.pre_definition
        ).merged(residual.cur_definition)
        self._residuals.append(residual)
        self._timelines.append(
            MeasurementTimeline(policy.max_wait_ns, policy.min_wait_ns)
        )
        return len(self._residuals) - 1

    def init(
        self,
        t0_ns: int,
        state: Optional[ElementVector] = None,
        covariance: Optional[Union[NDArray[np.float64], Mapping[str, float]]] = None,
    ) -> None:
        """Start estimating at ``t0_ns``.

        Args:
            t0_ns: Initial time
            state: Optional prior; elements it shares with the state
                definition are copied, all others start at identity
            covariance: Optional prior covariance over the state tangent, or a
                mapping from element name to variance with the configured
                initial variance for unnamed elements
        """
        if self._state is not None:
            raise FilterStateError("filter is already initialized")

        estimate: ElementVector = ElementVector(self._state_definition)
        if state is not None:
            estimate.project_from(state)

        dim: int = self._state_definition.dim()
        prior: Covariance
        try:
            if covariance is None or isinstance(covariance, Mapping):
                prior = Covariance.for_definition(
                    self._state_definition,
                    covariance,
                    self._params.update.initial_variance,
                )
            else:
                prior = Covariance(np.asarray(covariance, dtype=float))
                prior.assert_psd()
        except CovarianceError as exc:
            raise FilterError(f"invalid prior covariance: {exc}") from exc
        if prior.dim() != dim:
            raise FilterError(f"prior covariance must have shape ({dim}, {dim})")

        for timeline in self._timelines:
            timeline.remove_processed_until(t0_ns)

        self._state = estimate
        self._covariance = prior.as_array()
        self._state_time_ns = t0_ns
        self._processed_ns = t0_ns
        _LOG.info(
            "Filter initialized at %d ns with %d residuals, state dim %d",
            t0_ns,
            len(self._residuals),
            dim,
        )

    def add_measurement(self, index: int, meas: ElementVector, t_ns: int) -> bool:
        """Queue a measurement for a residual.

        Returns:
            False when the measurement is at or before the processed time
        """
        self._require_state()
        residual: Residual = self.residual(index)
        if meas.definition != residual.measurement_definition:
            raise FilterError(
                f"measurement does not match the definition of {residual.name}"
            )
        timeline: MeasurementTimeline = self._timelines[index]
        if not timeline.add_measurement(meas, t_ns):
            _LOG.warning(
                "Rejecting stale %s measurement at %d ns, processed up to %s ns",
                residual.name,
                t_ns,
                timeline.last_processed_time,
            )
            return False
        return True

    def update(self, target_time_ns: Optional[int] = None) -> None:
        """Fuse queued measurements up to the reachable horizon.

        The horizon is the minimum of ``target_time_ns`` (default: now) and
        the maximal update time of every timeline. It can stay below the
        target while a stream is still expected to deliver.
        """
        self._require_state()
        assert self._processed_ns is not None

        now_ns: int = self._clock.now_ns()
        horizon_ns: int = now_ns if target_time_ns is None else int(target_time_ns)
        for timeline in self._timelines:
            horizon_ns = min(horizon_ns, timeline.get_maximal_update_time(now_ns))
        if horizon_ns <= self._processed_ns:
            self._last_report = FilterUpdateReport(
                horizon_ns=self._processed_ns,
                processed_times_ns=(),
                accepted_updates=0,
                rejected_updates=0,
            )
            return
        if target_time_ns is not None and horizon_ns < target_time_ns:
            _LOG.info(
                "Horizon %d ns is short of target %d ns, waiting for measurements",
                horizon_ns,
                target_time_ns,
            )

        times: set[int] = set()
        for residual, timeline in zip(self._residuals, self._timelines):
            if self._summarizes(residual):
                timeline.add_last_in_range(times, self._processed_ns, horizon_ns)
            else:
                timeline.add_all_in_range(times, self._processed_ns, horizon_ns)
        self._check_interruptions(times)

        accepted: int = 0
        rejected: int = 0
        ordered: list[int] = sorted(times)
        for t_ns in ordered:
            outcome: Optional[bool] = self._process_time(t_ns)
            if outcome is True:
                accepted += 1
            elif outcome is False:
                rejected += 1

        for timeline in self._timelines:
            timeline.remove_processed_until(horizon_ns)
        self._processed_ns = horizon_ns
        self._last_report = FilterUpdateReport(
            horizon_ns=horizon_ns,
            processed_times_ns=tuple(ordered),
            accepted_updates=accepted,
            rejected_updates=rejected,
        )

    def eval_residuals(
        self,
        pre: ElementVector,
        cur: ElementVector,
        measurements: Optional[Mapping[int, ElementVector]] = None,
        dt: float = 0.0,
    ) -> list[NDArray[np.float64]]:
        """Evaluate every residual at two states without touching the filter.

        Missing measurements default to identity. Noise is zero.
        """
        results: list[NDArray[np.float64]] = []
        for index, residual in enumerate(self._residuals):
            meas: Optional[ElementVector] = (
                measurements.get(index) if measurements is not None else None
            )
            results.append(
                residual.evaluate_residual(
                    self._project(residual.pre_definition, pre),
                    self._project(residual.cur_definition, cur),
                    meas,
                    dt,
                ).to_tangent()
            )
        return results

    def verify_jacobians(
        self,
        index: int,
        pre: ElementVector,
        cur: ElementVector,
        meas: Optional[ElementVector] = None,
        dt: float = VERIFY_DT_SEC,
    ) -> list[JacobianCheck]:
        """Check a residual's analytic Jacobians at two filter states.

        Uses the configured finite-difference step and tolerance. Predictions
        additionally check their prediction Jacobians.

        Raises:
            JacobianMismatchError: A Jacobian deviates beyond the tolerance
        """
        residual: Residual = self.residual(index)
        eps: float = self._params.verification.fd_epsilon
        tolerance: float = self._params.verification.jacobian_tolerance
        pre_r: ElementVector = self._project(residual.pre_definition, pre)
        checks: list[JacobianCheck] = residual.verify_jacobians(
            pre_r,
            self._project(residual.cur_definition, cur),
            meas,
            dt,
            eps=eps,
            tolerance=tolerance,
        )
        if isinstance(residual, Prediction):
            residual.verify_prediction_jacobians(
                pre_r, meas, dt, eps=eps, tolerance=tolerance
            )
        return checks

    def _check_interruptions(self, times: set[int]) -> None:
        """Refuse evaluation times that would cut a non-splittable interval.

        A transition residual that cannot be split only covers the interval
        ending at its own stamp. Evaluating at any other time before a stamp
        it still holds would drop part of that interval, so the update is
        refused before the estimate changes.
        """
        for residual, timeline in zip(self._residuals, self._timelines):
            if residual.is_unary or residual.is_splittable:
                continue
            for t_ns in sorted(times):
                if t_ns in timeline:
                    continue
                next_ns: Optional[int] = timeline.next_time(t_ns)
                if next_ns is not None:
                    raise FilterError(
                        f"{residual.name} cannot be split at {t_ns} ns inside "
                        f"its interval ending at {next_ns} ns"
                    )

    def _process_time(self, t_ns: int) -> Optional[bool]:
        """Advance the estimate to ``t_ns``.

        Returns:
            None when nothing was fused, else whether the update was accepted
        """
        assert self._state is not None
        assert self._covariance is not None
        assert self._state_time_ns is not None

        prev_ns: int = self._state_time_ns
        dt: float = ns_to_sec(t_ns - prev_ns)
        active: list[tuple[int, ElementVector]] = []
        for index in range(len(self._residuals)):
            meas: Optional[ElementVector] = self._active_measurement(
                index, prev_ns, t_ns
            )
            if meas is not None:
                active.append((index, meas))

        pre: ElementVector = self._state.copy()
        P: NDArray[np.float64] = self._covariance
        propagation: _Propagation = self._predict(pre, active, dt)
        cur: ElementVector = propagation.state
        F: NDArray[np.float64] = propagation.F
        FP: NDArray[np.float64] = F @ P
        P_cur: NDArray[np.float64] = (
            Covariance(P).propagated(F, propagation.Q).as_array()
        )

        observations: list[tuple[int, ElementVector]] = [
            (index, meas)
            for index, meas in active
            if index not in propagation.consumed
            and not isinstance(self._residuals[index], Prediction)
        ]
        outcome: Optional[bool] = None
        if observations:
            P_joint: NDArray[np.float64] = np.block([[P, FP.T], [FP, P_cur]])
            result: UpdateResult = self._fuse(pre, cur, observations, P_joint, dt)
            outcome = result.report.accepted
            if result.correction is not None and result.covariance is not None:
                n: int = self._state_definition.dim()
                cur = cur.box_plus(result.correction[n:])
                P_cur = result.covariance[n:, n:]
            else:
                _LOG.warning(
                    "Rejected update at %d ns: %s", t_ns, result.report.reason
                )

        self._state.project_from(cur)
        self._covariance = Linalg.symmetrize(P_cur)
        self._state_time_ns = t_ns
        return outcome

    def _active_measurement(
        self, index: int, prev_ns: int, t_ns: int
    ) -> Optional[ElementVector]:
        """Return the measurement of a residual that applies at ``t_ns``.

        For transition residuals, measurements inside ``(prev, t)`` are merged
        into their successor, and a measurement after ``t`` is split at ``t``
        so that exactly one measurement covers ``(prev, t]``.
        """
        residual: Residual = self._residuals[index]
        timeline: MeasurementTimeline = self._timelines[index]
        if residual.is_unary:
            return timeline.measurement_at(t_ns)

        if residual.is_mergeable:
            for t1_ns in timeline.times_in_range(prev_ns, t_ns - 1):
                t2_ns: Optional[int] = timeline.next_time(t1_ns)
                assert t2_ns is not None
                timeline.merge_measurements(prev_ns, t1_ns, t2_ns, residual)

        meas: Optional[ElementVector] = timeline.measurement_at(t_ns)
        if meas is not None:
            return meas
        if not residual.is_splittable:
            return None
        next_ns: Optional[int] = timeline.next_time(t_ns)
        if next_ns is None:
            return None
        timeline.split_measurements(prev_ns, t_ns, next_ns, residual)
        return timeline.measurement_at(t_ns)

    def _predict(
        self, pre: ElementVector, active: list[tuple[int, ElementVector]], dt: float
    ) -> _Propagation:
        n: int = self._state_definition.dim()
        cur: ElementVector = pre.copy()
        F: NDArray[np.float64] = np.zeros((n, n), dtype=float)
        Q: NDArray[np.float64] = np.zeros((n, n), dtype=float)
        driven: set[str] = set()
        consumed: set[int] = set()

        for index, meas in active:
            prediction: Residual = self._residuals[index]
            if not isinstance(prediction, Prediction):
                continue
            pre_r: ElementVector = self._project(prediction.pre_definition, pre)
            cur.project_from(prediction.evaluate_prediction(pre_r, meas, dt))
            F_r, G = prediction.prediction_jacobians(pre_r, meas, dt)
            rows: NDArray[np.intp] = self._indices(prediction.cur_definition)
            cols: NDArray[np.intp] = self._indices(prediction.pre_definition)
            F[np.ix_(rows, cols)] = F_r
            Q[np.ix_(rows, rows)] = G @ prediction.effective_noise_covariance(dt) @ G.T
            driven.update(prediction.cur_definition.names())
            consumed.add(index)

        for index, meas in active:
            residual: Residual = self._residuals[index]
            if residual.is_unary or isinstance(residual, Prediction):
                continue
            names: set[str] = set(residual.cur_definition.names())
            if names & driven:
                continue
            if residual.residual_definition.dim() != residual.cur_definition.dim():
                continue
            try:
                solved, F_r, Q_r = self._solve_implicit(residual, pre, cur, meas, dt)
            except np.linalg.LinAlgError:
                _LOG.debug("%s is singular in the current state", residual.name)
                continue
            cur.project_from(solved)
            rows = self._indices(residual.cur_definition)
            cols = self._indices(residual.pre_definition)
            F[np.ix_(rows, cols)] = F_r
            Q[np.ix_(rows, rows)] = Q_r
            driven.update(names)
            consumed.add(index)

        random_walk_variance: float = self._params.update.random_walk_variance
        for name in self._state_definition.names():
            if name in driven:
                continue
            span: slice = self._state_definition.tangent_slice(name)
            size: int = span.stop - span.start
            F[span, span] = np.eye(size)
            Q[span, span] = random_walk_variance * dt * np.eye(size)

        return _Propagation(state=cur, F=F, Q=Q, consumed=frozenset(consumed))

    def _solve_implicit(
        self,
        residual: Residual,
        pre: ElementVector,
        cur: ElementVector,
        meas: ElementVector,
        dt: float,
    ) -> tuple[ElementVector, NDArray[np.float64], NDArray[np.float64]]:
        """Solve ``r(pre, cur) = 0`` for the residual's current elements.

        Linearizing ``A δpre + B δcur + C n = 0`` gives the transition
        ``δcur = -B⁻¹ A δpre`` and the noise covariance
        ``B⁻¹ C R Cᵀ B⁻ᵀ``.
        """
        pre_r: ElementVector = self._project(residual.pre_definition, pre)
        cur_r: ElementVector = self._project(residual.cur_definition, cur)
        for _ in range(self._params.update.implicit_iterations):
            step_lin: Linearization = residual.linearize(pre_r, cur_r, meas, dt)
            step: NDArray[np.float64] = np.linalg.solve(
                step_lin.jac_cur, -step_lin.residual
            )
            cur_r = cur_r.box_plus(step)

        lin: Linearization = residual.linearize(pre_r, cur_r, meas, dt)
        B_inv_A: NDArray[np.float64] = np.linalg.solve(lin.jac_cur, lin.jac_pre)
        B_inv_C: NDArray[np.float64] = np.linalg.solve(lin.jac_cur, lin.jac_noi)
        Q_r: NDArray[np.float64] = (
            B_inv_C @ residual.effective_noise_covariance(dt) @ B_inv_C.T
        )
        return cur_r, -B_inv_A, Q_r

    def _fuse(
        self,
        pre: ElementVector,
        cur: ElementVector,
        observations: list[tuple[int, ElementVector]],
        P_joint: NDArray[np.float64],
        dt: float,
    ) -> UpdateResult:
        """Stack the observations and run one joint Kalman update."""
        n: int = self._state_definition.dim()
        H_rows: list[NDArray[np.float64]] = []
        R_blocks: list[NDArray[np.float64]] = []
        residuals: list[NDArray[np.float64]] = []
        for index, meas in observations:
            residual: Residual = self._residuals[index]
            lin: Linearization = residual.linearize(
                self._project(residual.pre_definition, pre),
                self._project(residual.cur_definition, cur),
                meas,
                dt,
            )
            H: NDArray[np.float64] = np.zeros((lin.residual.shape[0], 2 * n))
            if not residual.is_unary:
                H[:, self._indices(residual.pre_definition)] = lin.jac_pre
            H[:, n + self._indices(residual.cur_definition)] = lin.jac_cur
            H_rows.append(H)
            R_blocks.append(
                lin.jac_noi @ residual.effective_noise_covariance(dt) @ lin.jac_noi.T
            )
            residuals.append(lin.residual)

        return self._update_step.apply(
            P_joint,
            np.vstack(H_rows),
            Linalg.block_diag(*R_blocks),
            -np.concatenate(residuals),
        )

    def _indices(self, definition: ElementVectorDefinition) -> NDArray[np.intp]:
        """Return the state tangent indices of a sub-definition's layout."""
        spans: list[NDArray[np.intp]] = [
            np.arange(
                self._state_definition.tangent_slice(name).start,
                self._state_definition.tangent_slice(name).stop,
            )
            for name in definition.names()
        ]
        if not spans:
            return np.zeros(0, dtype=np.intp)
        return np.concatenate(spans)

    @staticmethod
    def _project(
        definition: ElementVectorDefinition, source: ElementVector
    ) -> ElementVector:
        missing: list[str] = [
            name for name in definition.names() if name not in source.definition
        ]
        if missing:
            raise FilterError(f"state is missing elements {missing}")
        vector: ElementVector = ElementVector(definition)
        vector.project_from(source)
        return vector

    @staticmethod
    def _summarizes(residual: Residual) -> bool:
        return not residual.is_unary and residual.is_mergeable

    def _require_state(self) -> ElementVector:
        if self._state is None:
            raise FilterStateError("filter is not initialized")
        return self._state

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._residuals):
            raise FilterError(f"no residual with index {index}")
