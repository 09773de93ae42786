import os
import shutil
import tempfile
from unittest.mock import patch


def card_data(**overrides):
    """A valid card payload; keyword arguments replace individual fields."""
    data = {
        'player_name': 'Mike Trout',
        'sport': 'Baseball',
        'year': 2009,
        'manufacturer': 'Topps',
        'set_name': 'Bowman Chrome',
        'card_number': 'BC1',
        'front_image': '/api/placeholder/250/350',
        'back_image': '/api/placeholder/250/350',
        'condition': {'centering': 9, 'corners': 9, 'edges': 8, 'surface': 9, 'overall': 'Near Mint'},
        'estimated_value': 2500,
        'market_value': 2650,
        'tags': ['rookie', 'chrome'],
    }
    data.update(overrides)
    return data


class TempDataMixin:
    """Point every data store at a throwaway directory for the test's duration."""

    def setUp(self):
        super().setUp()
        self.data_root = tempfile.mkdtemp(prefix='cardwise_test_')
        self._patches = [
            patch('collection_utils.DATA_ROOT', self.data_root),
            patch('collection_utils.USERS_YAML', os.path.join(self.data_root, 'users.yaml')),
            patch('collection_utils.SETTINGS_YAML', os.path.join(self.data_root, 'settings.yaml')),
        ]
        for p in self._patches:
            p.start()

    def tearDown(self):
        for p in reversed(self._patches):
            p.stop()
        shutil.rmtree(self.data_root, ignore_errors=True)
        super().tearDown()
