import jax.numpy as jnp


def all_finite(*arrays) -> bool:
    """True when every entry of every array is finite (forces a host sync)."""
    return all(bool(jnp.all(jnp.isfinite(a))) for a in arrays)
