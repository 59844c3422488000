"""Convergence test for the algebraic solver."""


def check_convergence(
    residual_norm: float,
    step_norm: float,
    y_norm: float,
    rtol: float,
    ftol: float,
) -> bool:
    """Check convergence of the current iterate.

    Convergence requires BOTH:
    - ``||g(y)|| <= ftol`` (residual converged)
    - ``||step|| <= rtol * (||y|| + rtol)`` (relative step converged)

    Parameters
    ----------
    residual_norm : float
        Euclidean norm of the residual at the current iterate.
    step_norm : float
        Euclidean norm of the proposed step.
    y_norm : float
        Euclidean norm of the current iterate.
    rtol : float
        Relative tolerance on the step.
    ftol : float
        Tolerance on the residual norm.

    Returns
    -------
    bool
        True if the iterate is accepted as a root.
    """
    return residual_norm <= ftol and step_norm <= rtol * (y_norm + rtol)
