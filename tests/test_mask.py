import logging
import unittest

import numpy as np

import pyogcm

Z_FACES = np.array([-4000.0, -3000.0, -2000.0, -1000.0, 0.0])


class TestImmersedMask(unittest.TestCase):
    def setUp(self) -> None:
        self.grid = pyogcm.make_grid((8, 3, 4), latitude=(-30.0, 30.0), z_faces=Z_FACES)

    def test_bottom(self):
        depth = np.full((8, 3), -5000.0)
        depth[1, :] = -3500.0  # centre of the bottom cell lies at -3500: stays active
        depth[2, :] = -3499.0  # bottom cell inactive
        depth[3, :] = -1200.0
        depth[4, :] = -400.0  # all cells below the bottom
        depth[5, :] = 10.0  # land
        depth[6, 0] = np.nan
        mask = pyogcm.build_mask(depth, self.grid)

        self.assertEqual(mask.bottom.shape, (8, 3))
        self.assertEqual(mask.active.shape, (8, 3, 4))
        np.testing.assert_array_equal(mask.bottom[:, 1], [0, 0, 1, 3, -1, -1, 0, 0])
        self.assertEqual(mask.bottom[6, 0], -1)

        np.testing.assert_array_equal(mask.active[3, 0], [False, False, False, True])
        self.assertFalse(mask.active[4].any())

        # Active cells form a contiguous stack from the bottommost active cell to the top
        for i in range(8):
            for j in range(3):
                k = mask.bottom[i, j]
                if k >= 0:
                    self.assertTrue(mask.active[i, j, k:].all())
                    self.assertFalse(mask.active[i, j, :k].any())

        np.testing.assert_array_equal(mask.wet[:, 1], mask.bottom[:, 1] >= 0)
        np.testing.assert_array_equal(
            mask.immersed[:, 1], [False, False, True, True, False, False, False, False]
        )

    def test_readonly(self):
        mask = pyogcm.build_mask(np.full((8, 3), -5000.0), self.grid)
        for values in (mask.depth, mask.active, mask.bottom):
            with self.assertRaises(ValueError):
                values[0, 0] = 0

    def test_partitioned(self):
        depth_glob = np.linspace(-4500.0, -500.0, 8)[:, np.newaxis] * np.ones((1, 3))
        mask_glob = pyogcm.build_mask(depth_glob, self.grid)
        for rank in range(2):
            partition = pyogcm.Partition(8, nranks=2, rank=rank)
            grid = pyogcm.make_grid(
                (8, 3, 4),
                latitude=(-30.0, 30.0),
                z_faces=Z_FACES,
                halo=(3, 3, 3),
                partition=partition,
            )
            depth = partition.partition_global_array(depth_glob, "bathymetry")
            mask = pyogcm.build_mask(depth, grid)
            np.testing.assert_array_equal(
                mask.bottom, mask_glob.bottom[partition.slice]
            )

    def test_shape(self):
        with self.assertRaises(pyogcm.DataShapeError):
            pyogcm.build_mask(np.zeros((3, 8)), self.grid)

    def test_log(self):
        with self.assertLogs("test_mask", level="INFO") as cm:
            pyogcm.build_mask(
                np.full((8, 3), -2500.0), self.grid, logger=logging.getLogger("test_mask")
            )
        self.assertIn("72 of 96 cells active", cm.output[0])


if __name__ == "__main__":
    unittest.main()
