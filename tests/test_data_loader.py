import numpy as np
import pytest
import xarray as xr

from surface_water import data_loader
from surface_water.data_loader import (
    SR_OFFSET,
    SR_SCALE,
    aoi_grid,
    asset_hrefs_by_band,
    build_stacks,
    item_crs,
    load_hand,
    load_single_scene,
    reproject_bbox,
    search_landsat,
    sensor_from_item,
)
from surface_water.errors import UnknownSensor
from surface_water.raster import AreaOfInterest, make_scene


def _item(item_id, platform='landsat-8', epsg=32633, when='2019-05-01T10:00:00Z'):
    return {
        'id': item_id,
        'geometry': {
            'type': 'Polygon',
            'coordinates': [[[14.0, 36.0], [14.5, 36.0], [14.5, 36.5], [14.0, 36.5], [14.0, 36.0]]],
        },
        'properties': {'platform': platform, 'proj:epsg': epsg, 'datetime': when},
        'assets': {
            'green': {'href': f's3://bucket/{item_id}_SR_B3.TIF', 'eo:bands': [{'name': 'SR_B3'}]},
            'swir16': {'href': f's3://bucket/{item_id}_SR_B6.TIF', 'eo:bands': [{'name': 'SR_B6'}]},
            'lwir11': {'href': f's3://bucket/{item_id}_ST_B10.TIF', 'eo:bands': [{'name': 'ST_B10'}]},
            'qa_pixel': {'href': f's3://bucket/{item_id}_QA_PIXEL.TIF'},
        },
    }


def test_reproject_bbox():
    bbox = reproject_bbox([14.0, 36.0, 14.1, 36.1], dst_crs="EPSG:32633")
    assert bbox[0] < bbox[2] and bbox[1] < bbox[3]
    assert 400000 < bbox[0] < 700000
    assert reproject_bbox([1, 2, 3, 4], "EPSG:32633", "EPSG:32633") == pytest.approx([1, 2, 3, 4])


@pytest.mark.parametrize('platform, sensor', [
    ('landsat-4', 'LANDSAT_4'),
    ('landsat-5', 'LANDSAT_5'),
    ('landsat-7', 'LANDSAT_7'),
    ('landsat-8', 'LANDSAT_8'),
    ('landsat-9', 'LANDSAT_8'),
])
def test_sensor_from_item(platform, sensor):
    assert sensor_from_item(_item('a', platform=platform)) == sensor


def test_sensor_from_item_unknown():
    with pytest.raises(UnknownSensor):
        sensor_from_item(_item('a', platform='sentinel-2a'))


def test_item_crs():
    assert item_crs(_item('a')) == 'EPSG:32633'
    item = _item('b')
    item['properties']['proj:code'] = 'EPSG:32634'
    assert item_crs(item) == 'EPSG:32634'


def test_asset_hrefs_by_band():
    hrefs = asset_hrefs_by_band(_item('a'))
    assert hrefs == {
        'B3': 's3://bucket/a_SR_B3.TIF',
        'B6': 's3://bucket/a_SR_B6.TIF',
        'B10': 's3://bucket/a_ST_B10.TIF',
    }


def test_asset_hrefs_by_band_files_thermal_under_band_map_id():
    item = _item('a', platform='landsat-7')
    item['assets']['lwir'] = {
        'href': 's3://bucket/a_ST_B6.TIF', 'eo:bands': [{'name': 'ST_B6'}],
    }
    del item['assets']['lwir11']
    hrefs = asset_hrefs_by_band(item, thermal_band='B6_VCID_1')
    assert hrefs['B6_VCID_1'] == 's3://bucket/a_ST_B6.TIF'
    assert hrefs['B6'] == 's3://bucket/a_SR_B6.TIF'


def test_search_landsat():
    class FakeSearch:
        def items_as_dicts(self):
            return iter([_item('a'), _item('b')])

    class FakeCatalog:
        def search(self, **kwargs):
            self.kwargs = kwargs
            return FakeSearch()

    catalog = FakeCatalog()
    items = search_landsat(catalog, [14.0, 36.0, 14.1, 36.1], '2019-04-01', '2019-06-30',
                           platforms=['landsat-8'])
    assert [i['id'] for i in items] == ['a', 'b']
    assert catalog.kwargs['collections'] == ['landsat-c2l2-sr']
    assert catalog.kwargs['query'] == {'platform': {'in': ['landsat-8']}}


@pytest.mark.parametrize('parallel', [True, False])
def test_build_stacks_groups_by_sensor(monkeypatch, parallel):
    def fake_load(item_dict, aoi, grid=None, chunks=None):
        if item_dict['id'] == 'broken':
            raise OSError("unreachable asset")
        sensor = sensor_from_item(item_dict)
        return make_scene(
            {'B3': np.ones((1, 1))}, item_dict['properties']['datetime'],
            [500015.0], [3999985.0], sensor=sensor,
        )

    monkeypatch.setattr(data_loader, 'load_single_scene', fake_load)

    items = [
        _item('a', platform='landsat-8'),
        _item('b', platform='landsat-7'),
        _item('c', platform='landsat-8', when='2019-05-17T10:00:00Z'),
        _item('broken', platform='landsat-5'),
    ]
    aoi = AreaOfInterest.from_bbox([14.0, 36.0, 14.1, 36.1])
    stacks = build_stacks(items, aoi, parallel=parallel)

    assert [s.sensor for s in stacks] == ['LANDSAT_7', 'LANDSAT_8']
    assert [len(s) for s in stacks] == [1, 2]
    assert all(s.crs == 'EPSG:32633' for s in stacks)


def test_build_stacks_empty():
    assert build_stacks([], AreaOfInterest.from_bbox([0, 0, 1, 1])) == []


def test_load_hand(tmp_path):
    hand = xr.DataArray(
        np.array([[10.0, 60.0], [5.0, 80.0]], dtype='float32'),
        dims=('y', 'x'),
        coords={'y': [3999985.0, 3999955.0], 'x': [500015.0, 500045.0]},
    ).rio.write_crs('EPSG:32633')
    path = tmp_path / 'hand.tif'
    hand.rio.to_raster(path)

    loaded = load_hand(path)
    assert loaded.name == 'hand'
    assert loaded.dims == ('y', 'x')
    np.testing.assert_allclose(loaded.values, hand.values)
    np.testing.assert_allclose(loaded['x'].values, hand['x'].values)


def test_load_aoi_dissolves_features(tmp_path):
    import geopandas as gpd
    from shapely.geometry import box

    gdf = gpd.GeoDataFrame(
        geometry=[box(14.0, 36.0, 14.1, 36.1), box(14.1, 36.0, 14.2, 36.1)],
        crs='EPSG:4326',
    )
    path = tmp_path / 'aoi.geojson'
    gdf.to_file(path, driver='GeoJSON')

    aoi = data_loader.load_aoi(str(path))
    assert aoi.same_crs('EPSG:4326')
    assert aoi.bounds == pytest.approx((14.0, 36.0, 14.2, 36.1))

    utm = data_loader.load_aoi(str(path), target_crs='EPSG:32633')
    assert utm.same_crs('EPSG:32633')


# 300 m x 300 m (10 x 10 pixels) in UTM 33N, on the 30 m lattice
UTM_AOI = AreaOfInterest.from_bbox([500010.0, 3999720.0, 500310.0, 4000020.0], 'EPSG:32633')
SCENE_BOUNDS = [498000.0, 3998010.0, 502020.0, 4002030.0]
DN = 10000.0


def _write_band(path, crs, bounds, value=DN, res=30.0):
    xmin, ymin, xmax, ymax = bounds
    nx = int((xmax - xmin) // res)
    ny = int((ymax - ymin) // res)
    band = xr.DataArray(
        np.full((ny, nx), value, dtype='float32'),
        dims=('y', 'x'),
        coords={
            'y': ymax - res * (np.arange(ny) + 0.5),
            'x': xmin + res * (np.arange(nx) + 0.5),
        },
    ).rio.write_crs(crs)
    band.rio.to_raster(path)
    return str(path)


def _local_item(item_id, green_href, epsg, when='2019-05-01T10:00:00Z'):
    item = _item(item_id, epsg=epsg, when=when)
    item['geometry']['coordinates'] = [[[14.9, 35.9], [15.1, 35.9], [15.1, 36.3], [14.9, 36.3], [14.9, 35.9]]]
    item['assets'] = {'green': {'href': green_href, 'eo:bands': [{'name': 'SR_B3'}]}}
    return item


def test_aoi_grid_pads_by_fringe_margin():
    grid = aoi_grid(UTM_AOI, 'EPSG:32633')
    assert grid.sizes == {'y': 50, 'x': 50}
    assert grid['x'].values[0] == 500010.0 - 20 * 30.0 + 15.0
    assert grid['y'].values[0] == 4000020.0 + 20 * 30.0 - 15.0
    assert aoi_grid(UTM_AOI, 'EPSG:32633', margin=0).sizes == {'y': 10, 'x': 10}


def test_load_single_scene_keeps_context_around_aoi(tmp_path):
    href = _write_band(tmp_path / 'green.tif', 'EPSG:32633', SCENE_BOUNDS)
    scene = load_single_scene(_local_item('a', href, 32633), UTM_AOI)

    assert scene.sizes == {'y': 50, 'x': 50}
    assert scene.attrs['sensor'] == 'LANDSAT_8'
    np.testing.assert_allclose(scene['B3'].values, DN * SR_SCALE + SR_OFFSET, rtol=1e-6)


def test_build_stacks_shares_grid_across_zones(tmp_path):
    href_33 = _write_band(tmp_path / 'a.tif', 'EPSG:32633', SCENE_BOUNDS)
    xmin, ymin, xmax, ymax = reproject_bbox(SCENE_BOUNDS, 'EPSG:32633', 'EPSG:32634')
    href_34 = _write_band(
        tmp_path / 'b.tif', 'EPSG:32634',
        [xmin - 500.0, ymin - 500.0, xmax + 500.0, ymax + 500.0],
    )
    items = [
        _local_item('a', href_33, 32633),
        _local_item('b', href_34, 32634, when='2019-05-17T10:00:00Z'),
    ]

    stacks = build_stacks(items, UTM_AOI, dst_crs='EPSG:32633', parallel=False)

    assert len(stacks) == 1 and len(stacks[0]) == 2
    grid = aoi_grid(UTM_AOI, 'EPSG:32633')
    for scene in stacks[0]:
        np.testing.assert_array_equal(scene['x'].values, grid['x'].values)
        np.testing.assert_array_equal(scene['y'].values, grid['y'].values)
        np.testing.assert_allclose(scene['B3'].values, DN * SR_SCALE + SR_OFFSET, rtol=1e-6)
