"""
Riemannian manifold Hamiltonian update with the SoftAbs metric.

The metric is built from the Hessian H of U = -log density (or a cheaper
approximation of it) by regularizing its eigenvalues:

    H = Q diag(lambda) Q^T,   G = Q diag(lambda~) Q^T,   lambda~ = lambda * coth(alpha * lambda)

so G is positive definite everywhere and approaches |H| as alpha grows. With
momentum p ~ N(0, G(q)) the Hamiltonian splits as

    H(q, p) = phi(q) + tau(q, p),   phi = U + 1/2 log det G,   tau = 1/2 p^T G^-1 p

and is integrated by the generalized (implicit) leapfrog:

    p_half = p - eps/2 * (dphi/dq(q) + dtau/dq(q, p_half))            fixed point in p
    q'     = q + eps/2 * (dtau/dp(q, p_half) + dtau/dp(q', p_half))    fixed point in q
    p'     = p_half - eps/2 * (dphi/dq(q') + dtau/dq(q', p_half))

The metric derivatives follow from the chain rule through the eigen
decomposition (Betancourt 2013, "A General Metric for Riemannian Manifold
Hamiltonian Monte Carlo"):

    dtau/dp   = Q diag(1 / lambda~) Q^T p
    dtau/dq_i = -1/2 tr(Q D J D Q^T dH/dq_i),     D = diag(Q^T p / lambda~)
    dphi/dq_i = dU/dq_i + 1/2 tr(Q (R o J) Q^T dH/dq_i),   R = diag(1 / lambda~)

with J_ij = (lambda~_i - lambda~_j) / (lambda_i - lambda_j) and
J_ii = coth(alpha lambda_i) - alpha lambda_i csch^2(alpha lambda_i).

The returned Hastings ratio is the non-potential part of -dH:
(1/2 log det G0 + tau0) - (1/2 log det G1 + tau1); the chain adds the change
in log density.

Functions:
    softabs: Regularized eigenvalues lambda * coth(alpha * lambda)
    softabs_jacobian: The matrix J above

Classes:
    SoftAbsMetric: Metric, its derivatives and momentum sampling at one position
    RiemannianManifoldHamiltonUpdate: The operator
"""

from typing import Union

import numpy as np

from ..error_handling import ProposalFailed, is_failure
from ..parameters import as_parameter
from ..settings import (
    RiemannianConfig,
    MetricApproximation,
    HAMILTON_EPSILON_CONSTANT,
    HAMILTON_STEPS_CONSTANT,
    default_epsilon,
    default_steps,
)
from .common import AcceptanceLevels, Proposal, reflect


# Below this |alpha * lambda| the series expansions are used
_SMALL = 1e-6


def softabs(lam: np.ndarray, alpha: float) -> np.ndarray:
    """lambda * coth(alpha * lambda), with limit 1/alpha at lambda = 0."""
    lam = np.asarray(lam, dtype=float)
    x = alpha * lam
    small = np.abs(x) < _SMALL
    safe = np.where(small, 1.0, x)
    return np.where(small, 1.0 / alpha + alpha * lam ** 2 / 3.0, lam / np.tanh(safe))


def _softabs_derivative(lam: np.ndarray, alpha: float) -> np.ndarray:
    """d/dlambda of softabs: coth(x) - x csch^2(x) with x = alpha * lambda."""
    x = alpha * np.asarray(lam, dtype=float)
    small = np.abs(x) < _SMALL
    safe = np.where(small, 1.0, x)
    with np.errstate(over='ignore'):
        regular = 1.0 / np.tanh(safe) - safe / np.sinh(safe) ** 2
    return np.where(small, 2.0 * x / 3.0, regular)


def softabs_jacobian(lam: np.ndarray, lam_soft: np.ndarray, alpha: float) -> np.ndarray:
    """
    Divided differences of the SoftAbs map over pairs of eigenvalues.

    Equal (or numerically equal) eigenvalues take the derivative instead of
    the quotient.
    """
    diff = lam[:, None] - lam[None, :]
    close = np.isclose(lam[:, None], lam[None, :], rtol=1e-10, atol=1e-12)
    derivative = np.broadcast_to(_softabs_derivative(lam, alpha)[:, None], diff.shape)
    quotient = (lam_soft[:, None] - lam_soft[None, :]) / np.where(close, 1.0, diff)
    return np.where(close, derivative, quotient)


class SoftAbsMetric:
    """
    SoftAbs metric evaluated at the current position of ``x``.

    Args:
        x: Parameter-like position
        potential: Potential of the log density
        alpha: SoftAbs sharpness
        approximation: Which curvature stands in for the Hessian of U

    Attributes:
        grad_u: Gradient of U
        hessian: The (approximate) Hessian of U the metric is built from
        hessian_gradient: Array with [i] = d(hessian)/dq_i
        eigenvalues, eigenvectors: Decomposition of ``hessian``
        soft: Regularized eigenvalues
        jacobian: The matrix J
    """

    def __init__(self, x, potential, alpha: float,
                 approximation: MetricApproximation = MetricApproximation.NONE):
        self.alpha = alpha
        self.grad_u = -np.asarray(potential.gradient(x), dtype=float)
        hess_u = -np.asarray(potential.curvature(x), dtype=float)
        dim = self.grad_u.shape[0]
        diagonal = np.arange(dim)

        if approximation in (MetricApproximation.NONE, MetricApproximation.DIAGONAL):
            third = -np.asarray(potential.curvature_gradient(x), dtype=float)
            if approximation == MetricApproximation.NONE:
                self.hessian = hess_u
                self.hessian_gradient = third
            else:
                self.hessian = np.diag(np.diag(hess_u))
                self.hessian_gradient = np.zeros((dim, dim, dim))
                self.hessian_gradient[:, diagonal, diagonal] = third[:, diagonal, diagonal]
        elif approximation == MetricApproximation.OUTER_PRODUCT:
            g = self.grad_u
            self.hessian = np.outer(g, g)
            self.hessian_gradient = (np.einsum('ai,b->iab', hess_u, g)
                                     + np.einsum('a,bi->iab', g, hess_u))
        else:
            g = self.grad_u
            self.hessian = np.diag(g * g)
            self.hessian_gradient = np.zeros((dim, dim, dim))
            self.hessian_gradient[:, diagonal, diagonal] = 2.0 * (hess_u * g[:, None]).T

        if not (np.all(np.isfinite(self.grad_u)) and np.all(np.isfinite(self.hessian))
                and np.all(np.isfinite(self.hessian_gradient))):
            raise FloatingPointError("non-finite curvature")

        self.eigenvalues, self.eigenvectors = np.linalg.eigh(0.5 * (self.hessian + self.hessian.T))
        self.soft = softabs(self.eigenvalues, alpha)
        self.jacobian = softabs_jacobian(self.eigenvalues, self.soft, alpha)

    def log_det(self) -> float:
        return float(np.sum(np.log(self.soft)))

    def tau(self, p: np.ndarray) -> float:
        z = self.eigenvectors.T @ p
        return float(0.5 * np.sum(z * z / self.soft))

    def dtau_dp(self, p: np.ndarray) -> np.ndarray:
        Q = self.eigenvectors
        return Q @ ((Q.T @ p) / self.soft)

    def dtau_dq(self, p: np.ndarray) -> np.ndarray:
        Q = self.eigenvectors
        d = (Q.T @ p) / self.soft
        M = Q @ (d[:, None] * self.jacobian * d[None, :]) @ Q.T
        return -0.5 * np.einsum('ab,iab->i', M, self.hessian_gradient)

    def dphi_dq(self) -> np.ndarray:
        Q = self.eigenvectors
        M = (Q * (np.diag(self.jacobian) / self.soft)) @ Q.T
        return self.grad_u + 0.5 * np.einsum('ab,iab->i', M, self.hessian_gradient)

    def sample_momentum(self, rng: np.random.Generator) -> np.ndarray:
        """p ~ N(0, G) as Q diag(sqrt(lambda~)) z."""
        z = rng.standard_normal(self.soft.shape[0])
        return self.eigenvectors @ (np.sqrt(self.soft) * z)


class RiemannianManifoldHamiltonUpdate(Proposal):
    """
    Hamiltonian update on the SoftAbs Riemannian metric.

    Args:
        x: Parameter or CompoundParameter (a list is wrapped in one)
        potential: Potential providing gradient, curvature and curvature_gradient
        config: RiemannianConfig
    """
    acceptance_levels = AcceptanceLevels(minimum=0.3, maximum=1.0,
                                         minimum_good=0.5, maximum_good=0.8)

    def __init__(self, x, potential, config: RiemannianConfig = None):
        config = config or RiemannianConfig()
        super().__init__(config.weight)
        self.x = as_parameter(x)
        self.potential = potential
        self.dimension = self.x.get_dimension()
        self.epsilon = config.epsilon or default_epsilon(HAMILTON_EPSILON_CONSTANT, self.dimension)
        self.steps = config.iterations or default_steps(HAMILTON_STEPS_CONSTANT, self.dimension)
        self.alpha = config.alpha
        self.approximation = config.approximation
        self.fixed_point_iterations = config.fixed_point_iterations
        self.fixed_point_tolerance = config.fixed_point_tolerance
        self.max_reflections = config.max_reflections
        self.coercion_mode = config.coercion_mode
        self.target_acceptance = config.target_acceptance
        self.name = f"riemannianManifoldHamiltonUpdate({getattr(self.x, 'name', 'q')})"

    def metric(self) -> SoftAbsMetric:
        return SoftAbsMetric(self.x, self.potential, self.alpha, self.approximation)

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        try:
            metric = self.metric()
            p = metric.sample_momentum(rng)
            start_energy = 0.5 * metric.log_det() + metric.tau(p)

            for _ in range(self.steps):
                result = self._step(metric, p)
                if is_failure(result):
                    return result
                metric, p = result
        except (FloatingPointError, np.linalg.LinAlgError) as err:
            return self.fail(str(err))

        end_energy = 0.5 * metric.log_det() + metric.tau(p)
        if not np.isfinite(end_energy):
            return self.fail("non-finite kinetic energy")
        return start_energy - end_energy

    def _step(self, metric: SoftAbsMetric, p: np.ndarray):
        half_epsilon = self.epsilon / 2
        tolerance = self.fixed_point_tolerance

        # implicit half step in the momentum
        dphi = metric.dphi_dq()
        p_half = p
        for _ in range(self.fixed_point_iterations):
            p_next = p - half_epsilon * (dphi + metric.dtau_dq(p_half))
            converged = np.max(np.abs(p_next - p_half)) < tolerance
            p_half = p_next
            if converged:
                break

        # implicit full step in the position
        q0 = self.x.get_values()
        velocity0 = metric.dtau_dp(p_half)
        target = q0 + self.epsilon * velocity0
        placed_momentum = p_half
        for _ in range(self.fixed_point_iterations):
            placed_momentum = self._place(target, p_half)
            if is_failure(placed_momentum):
                return placed_momentum
            metric = self.metric()
            target = q0 + half_epsilon * (velocity0 + metric.dtau_dp(p_half))
            if np.max(np.abs(target - self.x.get_values())) < tolerance:
                break

        # explicit half step in the momentum
        p_half = placed_momentum
        p_new = p_half - half_epsilon * (metric.dphi_dq() + metric.dtau_dq(p_half))
        if not np.all(np.isfinite(p_new)):
            return self.fail("non-finite momentum")
        return metric, p_new

    def _place(self, target: np.ndarray, momentum: np.ndarray) -> Union[np.ndarray, ProposalFailed]:
        """Move x to ``target`` coordinate by coordinate, reflecting at the bounds."""
        momentum = momentum.copy()
        for i in range(self.dimension):
            lower, upper = self.x.get_bounds_of(i)
            value, momentum[i], count = reflect(target[i], momentum[i], lower, upper,
                                                self.max_reflections)
            if count > self.max_reflections:
                return self.fail(f"coordinate {i} exceeded {self.max_reflections} reflections")
            self.x.set_value(i, value)
        return momentum

    def get_coercable_parameter(self) -> float:
        return float(np.log(self.epsilon))

    def set_coercable_parameter(self, value: float) -> None:
        self.epsilon = float(np.exp(value))

    def get_raw_parameter(self) -> float:
        return self.epsilon
