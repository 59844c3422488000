"""
Derivatives of solver outputs w.r.t. their parameters.

None of these differentiate through solver iterations. They combine Jacobians
of the user function, evaluated at converged or final states, analytically.

implicit_vjp
    Implicit function theorem at a root of an algebraic system.
augment_with_sensitivities
    Forward sensitivity equations for ODE initial value problems.
derivative_integrand, endpoint_terms
    Leibniz integral rule.
JacobianProduct, attach_jacobians
    Autograd node backed by precomputed Jacobians.
"""

from torchhof.sensitivity._forward import (
    AugmentedSystem,
    augment_with_sensitivities,
    initial_sensitivities,
    split_sensitivities,
)
from torchhof.sensitivity._implicit import implicit_vjp
from torchhof.sensitivity._jacobian_product import (
    JacobianProduct,
    attach_jacobians,
)
from torchhof.sensitivity._leibniz import derivative_integrand, endpoint_terms

__all__ = [
    "AugmentedSystem",
    "JacobianProduct",
    "attach_jacobians",
    "augment_with_sensitivities",
    "derivative_integrand",
    "endpoint_terms",
    "implicit_vjp",
    "initial_sensitivities",
    "split_sensitivities",
]
