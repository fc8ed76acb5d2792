"""Grid statistics reduced across the slab decomposition.

Each rank contributes a partial over its own slab of the interior; the
partials are combined with the context's collective reductions, so the
results do not depend on the number of ranks beyond summation order.
"""

from __future__ import annotations

import numpy as np

from cosmopm.core.lattice import POSITION, Field
from cosmopm.core.parallel import ParallelContext


def _slab_values(
    field: Field,
    component: int,
    context: ParallelContext | None,
) -> tuple[list[np.ndarray], ParallelContext]:
    field.require_domain(POSITION, "statistics field")
    if not 0 <= component < field.components:
        raise ValueError(
            f"component {component} out of range for field '{field.name}' "
            f"with {field.components} component(s)"
        )
    ctx = context if context is not None else field.lattice.context
    values = field.interior[component]
    return [values[s] for s in ctx.slabs(field.lattice.size)], ctx


def field_mean(field: Field, context: ParallelContext | None = None, component: int = 0) -> float:
    """Grid average of one component of a position-space field."""
    slabs, ctx = _slab_values(field, component, context)
    total = ctx.allreduce_sum([float(np.sum(s)) for s in slabs])
    return total / field.lattice.n_cells


def field_rms(field: Field, context: ParallelContext | None = None, component: int = 0) -> float:
    """Root-mean-square of one component over the grid."""
    slabs, ctx = _slab_values(field, component, context)
    total = ctx.allreduce_sum([float(np.sum(s * s)) for s in slabs])
    return float(np.sqrt(total / field.lattice.n_cells))


def field_extrema(
    field: Field,
    context: ParallelContext | None = None,
    component: int = 0,
) -> tuple[float, float]:
    """Global ``(min, max)`` of one component."""
    slabs, ctx = _slab_values(field, component, context)
    lo = ctx.allreduce([float(np.min(s)) for s in slabs], min)
    hi = ctx.allreduce([float(np.max(s)) for s in slabs], max)
    return lo, hi
