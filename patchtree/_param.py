"""Training parameters shared by the trees of a forest."""

import numbers


class ForestParam:
    """Parameters of a patch-based forest.

    Only ``max_depth``, ``min_patches`` and ``ntests`` drive the growth of a
    single tree; the rest of the record travels with every tree snapshot so
    a reloaded tree carries the configuration it was trained with.

    Parameters
    ----------
    max_depth : int, default=15
        Tree stopping criterion on depth.
    min_patches : int, default=20
        Tree stopping criterion on the number of samples of a node.
    ntests : int, default=2000
        Number of candidate tests generated to find the split of a node.
    ntrees : int, default=10
        Number of trees per forest.
    nimages : int, default=1000
        Number of images per class.
    npatches : int, default=20
        Number of patches sampled per image.
    face_size : int, default=100
        Face size in pixels.
    patch_size_ratio : float, default=0.25
        Patch side relative to the face size.
    tree_path : str, default=''
        Directory where trees are loaded from or saved to.
    image_path : str, default=''
        Directory of the training images.
    features : list of int, optional
        Feature channels extracted from every patch.
    """

    def __init__(self, max_depth=15, min_patches=20, ntests=2000, ntrees=10,
                 nimages=1000, npatches=20, face_size=100, patch_size_ratio=0.25,
                 tree_path='', image_path='', features=None):
        self.max_depth = max_depth
        self.min_patches = min_patches
        self.ntests = ntests
        self.ntrees = ntrees
        self.nimages = nimages
        self.npatches = npatches
        self.face_size = face_size
        self.patch_size_ratio = patch_size_ratio
        self.tree_path = tree_path
        self.image_path = image_path
        self.features = list(features) if features is not None else []

        self._validate()

    def _validate(self):
        for name in ('max_depth', 'min_patches'):
            value = getattr(self, name)
            if not isinstance(value, numbers.Integral) or value < 0:
                raise ValueError(f"{name} must be a non-negative integer, got {value!r}")

        if not isinstance(self.ntests, numbers.Integral) or self.ntests < 1:
            raise ValueError(f"ntests must be a positive integer, got {self.ntests!r}")

        if self.get_patch_size() < 1:
            raise ValueError(
                "face_size * patch_size_ratio must be at least one pixel, got "
                f"{self.face_size!r} * {self.patch_size_ratio!r}"
            )

    def get_patch_size(self):
        return int(round(self.face_size * self.patch_size_ratio))

    def get_params(self):
        """Return the parameters as a dictionary."""
        return {
            'max_depth': self.max_depth,
            'min_patches': self.min_patches,
            'ntests': self.ntests,
            'ntrees': self.ntrees,
            'nimages': self.nimages,
            'npatches': self.npatches,
            'face_size': self.face_size,
            'patch_size_ratio': self.patch_size_ratio,
            'tree_path': self.tree_path,
            'image_path': self.image_path,
            'features': list(self.features),
        }

    def __eq__(self, other):
        if not isinstance(other, ForestParam):
            return NotImplemented
        return self.get_params() == other.get_params()

    def __repr__(self):
        params = ', '.join(f"{k}={v!r}" for k, v in self.get_params().items())
        return f"ForestParam({params})"
