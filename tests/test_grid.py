import os
import tempfile
import unittest

import numpy as np
import netCDF4

import pyogcm
from pyogcm import CENTER, FACE, Topology
from pyogcm.constants import DEG2RAD, R_EARTH

Z_FACES = np.array([-5000.0, -3000.0, -1500.0, -500.0, -100.0, -10.0, 0.0])


def create_grid(**kwargs):
    kwargs.setdefault("z_faces", Z_FACES)
    return pyogcm.make_grid((36, 15, 6), latitude=(-75.0, 75.0), **kwargs)


class TestGrid(unittest.TestCase):
    def test_nodes(self):
        grid = create_grid()
        self.assertEqual(grid.size, (36, 15, 6))
        self.assertEqual(grid.halo_size, (5, 5, 5))
        self.assertEqual(
            grid.topology, (Topology.PERIODIC, Topology.BOUNDED, Topology.BOUNDED)
        )

        # Periodic: as many faces as centers; bounded: one more face than centers
        self.assertEqual(grid.lon_c.size, 36)
        self.assertEqual(grid.lon_f.size, 36)
        self.assertEqual(grid.lat_c.size, 15)
        self.assertEqual(grid.lat_f.size, 16)
        self.assertEqual(grid.z_c.size, 6)
        self.assertEqual(grid.z_f.size, 7)

        np.testing.assert_allclose(grid.lon_f, np.arange(-180.0, 180.0, 10.0))
        np.testing.assert_allclose(grid.lon_c, np.arange(-175.0, 180.0, 10.0))
        np.testing.assert_allclose(grid.lat_f, np.linspace(-75.0, 75.0, 16))
        np.testing.assert_allclose(grid.z_f, Z_FACES)
        np.testing.assert_allclose(grid.z_c, 0.5 * (Z_FACES[:-1] + Z_FACES[1:]))

        self.assertEqual(grid.shape(FACE, CENTER, CENTER), (36, 15, 6))
        self.assertEqual(grid.shape(CENTER, FACE, CENTER), (36, 16, 6))
        self.assertEqual(grid.shape(CENTER, CENTER, FACE), (36, 15, 7))

        bounded = create_grid(topology=("Bounded", "Bounded", "Bounded"))
        self.assertEqual(bounded.lon_f.size, 37)

    def test_flat(self):
        grid = pyogcm.make_grid(
            (10, 1, 4), latitude=(-10.0, 10.0), topology=("Periodic", "Flat", "Bounded")
        )
        self.assertEqual(grid.halo_size, (5, 0, 5))
        self.assertEqual(grid.lat_c.size, 1)
        self.assertEqual(grid.lat_f.size, 1)
        self.assertEqual(grid.dy().shape, (10, 1))
        np.testing.assert_allclose(grid.dy(), DEG2RAD * R_EARTH * 20.0)

        with self.assertRaisesRegex(pyogcm.ConfigurationError, "single cell"):
            pyogcm.make_grid((10, 2, 4), topology=("Periodic", "Flat", "Bounded"))

    def test_metrics(self):
        for precompute in (False, True):
            with self.subTest(precompute_metrics=precompute):
                grid = create_grid(precompute_metrics=precompute)
                self.assertEqual(grid.precomputed, precompute)

                dx = grid.dx(CENTER, CENTER)
                self.assertEqual(dx.shape, (36, 15))
                np.testing.assert_allclose(
                    dx[0, :], DEG2RAD * R_EARTH * 10.0 * np.cos(DEG2RAD * grid.lat_c)
                )
                self.assertTrue((dx == dx[:1, :]).all())

                dy = grid.dy(CENTER, FACE)
                self.assertEqual(dy.shape, (36, 16))
                np.testing.assert_allclose(dy, DEG2RAD * R_EARTH * 10.0)

                # Cell areas add up to the area of the spherical band
                area = grid.area()
                band = (
                    2 * np.pi * R_EARTH ** 2
                    * (np.sin(DEG2RAD * 75.0) - np.sin(DEG2RAD * -75.0))
                )
                self.assertAlmostEqual(area.sum() / band, 1.0, places=12)

                dz = grid.dz(CENTER)
                np.testing.assert_allclose(dz, np.diff(Z_FACES))
                self.assertEqual(grid.dz(FACE).shape, (7,))
                self.assertEqual(grid.dz_top, 10.0)
                self.assertEqual(grid.dz_bottom, 2000.0)

                volume = grid.volume()
                self.assertEqual(volume.shape, (36, 15, 6))
                np.testing.assert_allclose(
                    volume.sum(), area.sum() * (Z_FACES[-1] - Z_FACES[0])
                )

                self.assertEqual(grid.dx(FACE, FACE).shape, (36, 16))
                self.assertEqual(grid.volume(FACE, CENTER, FACE).shape, (36, 15, 7))

        precomputed = create_grid(precompute_metrics=True)
        self.assertFalse(precomputed.dx().flags.writeable)
        on_demand = create_grid()
        for lx in (CENTER, FACE):
            for ly in (CENTER, FACE):
                np.testing.assert_array_equal(precomputed.area(lx, ly), on_demand.area(lx, ly))

    def test_invalid(self):
        with self.assertRaisesRegex(pyogcm.ConfigurationError, "strictly increasing"):
            create_grid(z_faces=Z_FACES[::-1])
        with self.assertRaisesRegex(pyogcm.ConfigurationError, "strictly increasing"):
            create_grid(z_faces=np.array([-50.0, -40.0, -30.0, -30.0, -20.0, -10.0, 0.0]))
        with self.assertRaises(pyogcm.ConfigurationError):
            create_grid(z_faces=Z_FACES[1:])
        with self.assertRaisesRegex(pyogcm.ConfigurationError, "stencil radius"):
            create_grid(halo=(2, 5, 5))
        with self.assertRaisesRegex(pyogcm.ConfigurationError, "stencil radius"):
            create_grid(halo=(5, 5, 3), stencil_radius=4)
        with self.assertRaises(pyogcm.ConfigurationError):
            create_grid(topology=("Periodic", "Bounded"))
        with self.assertRaisesRegex(pyogcm.ConfigurationError, "Unknown topology"):
            create_grid(topology=("Periodic", "Walled", "Bounded"))
        with self.assertRaises(pyogcm.ConfigurationError):
            pyogcm.make_grid((36, 15, 6), latitude=(-95.0, 75.0), z_faces=Z_FACES)

    def test_partition(self):
        nranks = 4
        lon_c, lon_f, dx = [], [], []
        glob = create_grid()
        for rank in range(nranks):
            partition = pyogcm.Partition(36, nranks=nranks, rank=rank)
            grid = create_grid(partition=partition)
            self.assertEqual(grid.size, (9, 15, 6))
            self.assertEqual(grid.global_size, (36, 15, 6))
            self.assertEqual(grid.ioffset, 9 * rank)
            lon_c.append(grid.lon_c)
            lon_f.append(grid.lon_f)
            dx.append(grid.dx(FACE, CENTER))
        np.testing.assert_array_equal(np.concatenate(lon_c), glob.lon_c)
        np.testing.assert_array_equal(np.concatenate(lon_f), glob.lon_f)
        np.testing.assert_array_equal(np.concatenate(dx), glob.dx(FACE, CENTER))

        with self.assertRaisesRegex(pyogcm.ConfigurationError, "smaller than the x halo"):
            create_grid(partition=pyogcm.Partition(36, nranks=12, rank=0))
        with self.assertRaises(pyogcm.ConfigurationError):
            create_grid(partition=pyogcm.Partition(72, nranks=4, rank=0))

    def test_save(self):
        grid = create_grid()
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "grid.nc")
            grid.save(path)
            with netCDF4.Dataset(path) as nc:
                np.testing.assert_array_equal(nc["lon_f"][:], grid.lon_f)
                np.testing.assert_array_equal(nc["lat_f"][:], grid.lat_f)
                np.testing.assert_array_equal(nc["area"][:], grid.area())
                self.assertEqual(nc.topology, "Periodic Bounded Bounded")


if __name__ == "__main__":
    unittest.main()
