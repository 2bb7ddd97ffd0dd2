"""
Matrix operations for phylogenetic likelihood calculations.

This module provides the dense small-matrix numerics needed to turn a rate
matrix into transition probabilities and their time derivatives.
"""

import numpy as np
from scipy.linalg import expm, null_space

from ..exceptions import DimensionError


def matrix_exponential(Q: np.ndarray, t: float) -> np.ndarray:
    """
    Compute transition probability matrix P(t) = exp(Q*t).

    Uses scipy's matrix exponential (Padé approximation with scaling and
    squaring).

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix (instantaneous substitution rate matrix)
    t : float
        Branch length (time)

    Returns
    -------
    P : ndarray, shape (n, n)
        Transition probability matrix where P[i,j] is the probability
        of state i transitioning to state j over time t

    Notes
    -----
    The transition probability matrix satisfies:
    - Row sums equal 1 (stochastic matrix)
    - All entries are non-negative
    - P(0) = I (identity matrix)
    - P(t1 + t2) = P(t1) @ P(t2) (semigroup property)
    """
    return expm(Q * t)


def eigen_decompose_rev(Q: np.ndarray, pi: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose reversible rate matrix Q = U @ diag(eigenvalues) @ V.

    Uses symmetrization trick for reversible (time-reversible) rate matrices:
    Transform Q to symmetric matrix Q' = √D @ Q @ √D^(-1), where D = diag(pi),
    then eigendecompose Q' and transform back.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Reversible rate matrix satisfying detailed balance: π_i * Q[i,j] = π_j * Q[j,i]
    pi : ndarray, shape (n,)
        Stationary distribution (equilibrium frequencies), strictly positive

    Returns
    -------
    eigenvalues : ndarray, shape (n,)
        Eigenvalues of Q, sorted in ascending order
    U : ndarray, shape (n, n)
        Left eigenvector matrix
    V : ndarray, shape (n, n)
        Right eigenvector matrix

    Notes
    -----
    The decomposition satisfies Q = U @ diag(eigenvalues) @ V and
    P(t) = U @ diag(exp(eigenvalues * t)) @ V.
    """
    sqrt_pi = np.sqrt(pi)

    Q_sym = Q * sqrt_pi[:, np.newaxis] / sqrt_pi[np.newaxis, :]
    # Remove rounding asymmetry before eigh
    Q_sym = 0.5 * (Q_sym + Q_sym.T)

    eigenvalues, eigenvectors = np.linalg.eigh(Q_sym)

    U = eigenvectors / sqrt_pi[:, np.newaxis]
    V = eigenvectors.T * sqrt_pi[np.newaxis, :]

    return eigenvalues, U, V


def create_reversible_Q(
    rates: np.ndarray, pi: np.ndarray, normalize: bool = True
) -> np.ndarray:
    """
    Create a reversible rate matrix from exchangeability rates and stationary distribution.

    Parameters
    ----------
    rates : ndarray, shape (n, n)
        Symmetric exchangeability matrix (r[i,j] = r[j,i])
    pi : ndarray, shape (n,)
        Stationary distribution (equilibrium frequencies)
    normalize : bool, default=True
        If True, scale Q so that expected rate is 1 substitution per time unit

    Returns
    -------
    Q : ndarray, shape (n, n)
        Reversible rate matrix satisfying detailed balance

    Notes
    -----
    Q[i,j] = r[i,j] * pi[j] for i ≠ j and Q[i,i] = -sum(Q[i,j] for j ≠ i),
    which satisfies detailed balance: pi[i] * Q[i,j] = pi[j] * Q[j,i].
    """
    rates = np.asarray(rates, dtype=float)
    pi = np.asarray(pi, dtype=float)
    if rates.shape != (len(pi), len(pi)):
        raise DimensionError(
            f"Exchangeability matrix has shape {rates.shape}, expected ({len(pi)}, {len(pi)})"
        )

    Q = rates * pi[np.newaxis, :]
    np.fill_diagonal(Q, 0.0)
    np.fill_diagonal(Q, -Q.sum(axis=1))

    if normalize:
        Q /= expected_rate(Q, pi)

    return Q


def expected_rate(Q: np.ndarray, pi: np.ndarray) -> float:
    """Expected number of substitutions per unit time at equilibrium: -sum(π_i Q_ii)."""
    return float(-np.dot(pi, Q.diagonal()))


def stationary_distribution(Q: np.ndarray) -> np.ndarray:
    """
    Stationary distribution of a (possibly non-reversible) rate matrix.

    Solves pi @ Q = 0 with sum(pi) = 1.

    Raises
    ------
    DimensionError
        If Q is not square
    """
    Q = np.asarray(Q, dtype=float)
    if Q.ndim != 2 or Q.shape[0] != Q.shape[1]:
        raise DimensionError(f"Rate matrix must be square, got shape {Q.shape}")
    kernel = null_space(Q.T)
    pi = np.abs(kernel[:, 0])
    return pi / pi.sum()


def check_detailed_balance(Q: np.ndarray, pi: np.ndarray, rtol: float = 1e-10) -> bool:
    """
    Test if rate matrix Q satisfies detailed balance with stationary distribution pi.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix
    pi : ndarray, shape (n,)
        Proposed stationary distribution
    rtol : float
        Relative tolerance for comparison

    Returns
    -------
    bool
        True if detailed balance is satisfied (π_i * Q[i,j] = π_j * Q[j,i])
    """
    flux = pi[:, np.newaxis] * Q
    return bool(np.allclose(flux, flux.T, rtol=rtol, atol=1e-14))


def check_generator(Q: np.ndarray, atol: float = 1e-10) -> None:
    """
    Validate that Q is a square rate matrix with zero row sums.

    Raises
    ------
    DimensionError
        If Q is not square or its rows do not sum to zero
    """
    if Q.ndim != 2 or Q.shape[0] != Q.shape[1]:
        raise DimensionError(f"Rate matrix must be square, got shape {Q.shape}")
    off_diagonal = Q - np.diag(np.diag(Q))
    if np.any(off_diagonal < -atol):
        raise DimensionError("Rate matrix has negative off-diagonal entries")
    if not np.allclose(Q.sum(axis=1), 0.0, atol=atol):
        raise DimensionError("Rate matrix rows must sum to zero")
