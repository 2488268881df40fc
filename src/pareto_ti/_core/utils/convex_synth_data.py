import numpy as np

"""
Convex Synthetic Data Generation
Synthetic datasets for archetypal analysis testing: known vertices, convex
combinations of them, configurable noise.

=== MODULE API INVENTORY ===

MAIN FUNCTIONS:
├── generate_convex_data(n_points, n_dimensions, n_archetypes, noise, seed=1205, archetype_type='random', scale=20.0, archetypes=None, concentration=1.0, verbose=False) -> tuple[np.ndarray, np.ndarray, np.ndarray]
│   └── Purpose: Generate observations as convex combinations of known archetypes plus Gaussian noise
│   └── Outputs: (points (n, d), archetypes (k, d), weights (n, k))
│   └── Side Effects: None; all randomness from a local np.random.Generator

ARCHETYPE GENERATION STRATEGIES:
├── 'corners': Separated corner patterns in the first 4 dimensions, random elsewhere
├── 'sphere': Uniform directions on the unit sphere, scaled
├── 'random': Uniform in [0, 1]^d, centred and scaled
└── explicit: `archetypes` argument, used as given

DATA GENERATION PROCESS:
├── Convex Combination: weights ~ Dirichlet(concentration, ..., concentration)
├── Point Generation: points = weights @ archetypes
└── Noise Addition: N(0, noise²) per coordinate
"""

ARCHETYPE_TYPES = ("random", "corners", "sphere")

CORNER_PATTERNS = [
    [0, 0, 0, 0],
    [1, 1, 1, 1],
    [1, 0, 1, 0],
    [0, 1, 0, 1],
]


def generate_convex_data(
    n_points: int,
    n_dimensions: int,
    n_archetypes: int,
    noise: float = 0.0,
    seed: int = 1205,
    archetype_type: str = "random",
    scale: float = 20.0,
    archetypes: np.ndarray | None = None,
    concentration: float = 1.0,
    verbose: bool = False,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Generate observations as convex combinations of known archetypes.

    Parameters
    ----------
    n_points : int
        Number of observations.
    n_dimensions : int
        Feature space dimension.
    n_archetypes : int
        Number of vertices.
    noise : float, default: 0.0
        Standard deviation of the Gaussian noise added to every coordinate.
    seed : int, default: 1205
        Seed of the local random generator.
    archetype_type : str, default: 'random'
        'random', 'corners' or 'sphere'. Ignored when ``archetypes`` is given.
    scale : float, default: 20.0
        Scale factor of the generated vertices.
    archetypes : np.ndarray | None
        Explicit vertex coordinates, shape (n_archetypes, n_dimensions).
    concentration : float, default: 1.0
        Dirichlet concentration; values < 1 push points towards the vertices.
    verbose : bool, default: False
        Print vertex positions and separation statistics.

    Returns
    -------
    tuple[np.ndarray, np.ndarray, np.ndarray]
        ``(points, archetypes, weights)``.
    """
    if n_points < 1 or n_dimensions < 1 or n_archetypes < 1:
        raise ValueError(
            f"n_points, n_dimensions and n_archetypes must be >= 1, "
            f"got {n_points}, {n_dimensions}, {n_archetypes}"
        )
    if noise < 0:
        raise ValueError(f"noise must be >= 0, got {noise}")
    if concentration <= 0:
        raise ValueError(f"concentration must be > 0, got {concentration}")

    rng = np.random.default_rng(seed)

    if archetypes is not None:
        archetypes = np.array(archetypes, dtype=float)
        if archetypes.shape != (n_archetypes, n_dimensions):
            raise ValueError(
                f"archetypes must have shape ({n_archetypes}, {n_dimensions}), got {archetypes.shape}"
            )
    elif archetype_type == "corners":
        if n_archetypes > len(CORNER_PATTERNS):
            raise ValueError(f"'corners' supports at most {len(CORNER_PATTERNS)} archetypes, got {n_archetypes}")
        n_corner_dims = min(n_dimensions, 4)
        archetypes = rng.random((n_archetypes, n_dimensions))
        for i in range(n_archetypes):
            archetypes[i, :n_corner_dims] = CORNER_PATTERNS[i][:n_corner_dims]
        archetypes = (archetypes - 0.5) * scale
    elif archetype_type == "sphere":
        archetypes = rng.standard_normal((n_archetypes, n_dimensions))
        archetypes = archetypes / np.linalg.norm(archetypes, axis=1, keepdims=True)
        # Already centred
        archetypes = archetypes * scale
    elif archetype_type == "random":
        archetypes = (rng.random((n_archetypes, n_dimensions)) - 0.5) * scale
    else:
        raise ValueError(f"Unknown archetype_type: {archetype_type}. Supported: {list(ARCHETYPE_TYPES)}")

    weights = rng.dirichlet(np.full(n_archetypes, concentration), n_points)
    points = weights @ archetypes
    if noise > 0:
        points = points + rng.normal(0, noise, (n_points, n_dimensions))

    if verbose:
        print("Archetype positions (first 5 dims):")
        for i, arch in enumerate(archetypes):
            print(f"  A{i}: {arch[:5]}")
        if n_archetypes > 1:
            diffs = archetypes[:, None, :] - archetypes[None, :, :]
            separations = np.linalg.norm(diffs, axis=-1)[np.triu_indices(n_archetypes, k=1)]
            print("Archetype separation stats:")
            print(f"  Mean distance: {np.mean(separations):.3f}")
            print(f"  Min distance: {np.min(separations):.3f}")
            print(f"  Max distance: {np.max(separations):.3f}")

    return points, archetypes, weights
