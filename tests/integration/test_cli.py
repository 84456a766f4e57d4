"""
Integration tests for the dataset-admin CLI and StoreService lifecycle.
"""

import json
import os
import uuid

import pytest

from dbaas.dataset_store.config import StoreSettings
from dbaas.dataset_store.errors import PoolClosedError
from dbaas.dataset_store.main import StoreService
from dbaas.dataset_store.tools import dataset_cli

OWNER = "00000000-0000-4000-8000-00000000a11c"
OTHER = "00000000-0000-4000-8000-000000000b0b"


class TestStoreService:
    """Tests for StoreService start/stop."""

    def test_context_manager(self, data_dir):
        service = StoreService(StoreSettings(db_path=os.path.join(data_dir, "svc.db"), wal_mode=False))

        with service as store:
            assert store.count() == 0
            pool = service.pool

        assert service.pool is None
        assert pool.closed
        with pytest.raises(PoolClosedError):
            store.count()

    def test_stop_twice(self, data_dir):
        service = StoreService(StoreSettings(db_path=os.path.join(data_dir, "svc.db")))
        service.start()
        service.stop()
        service.stop()


class TestDatasetCli:
    """Tests for dataset_cli.main."""

    @pytest.fixture(autouse=True)
    def no_logging_setup(self, monkeypatch):
        monkeypatch.setattr(dataset_cli, "setup_logging", lambda settings: None)

    @pytest.fixture
    def db(self, data_dir):
        return os.path.join(data_dir, "cli.db")

    @pytest.fixture
    def import_file(self, data_dir):
        dataset_id = str(uuid.uuid4())
        path = os.path.join(data_dir, "import.json")
        with open(path, "w") as f:
            json.dump(
                [
                    {"id": dataset_id, "family": 1, "schema": "generic-v1", "creator": OWNER, "blob": {"title": "A"}},
                    {"family": 1, "schema": "generic-v1", "creator": OWNER, "blob": {"title": "B"}},
                ],
                f,
            )
        return path, dataset_id

    def _run(self, capsys, *argv):
        code = dataset_cli.main(list(argv))
        out, err = capsys.readouterr()
        return code, out, err

    def test_import_get_list(self, capsys, db, import_file):
        path, dataset_id = import_file

        code, out, _ = self._run(capsys, "--db", db, "import", path)
        assert code == 0
        assert "Imported 2 dataset(s)" in out

        code, out, _ = self._run(capsys, "--db", db, "get", dataset_id)
        assert code == 0
        doc = json.loads(out)
        assert doc["blob"] == {"title": "A"}
        assert doc["owner"] == OWNER

        code, out, _ = self._run(capsys, "--db", db, "list", "--owner", OWNER)
        assert code == 0
        listed = json.loads(out)
        assert len(listed) == 2
        assert all("blob" not in item for item in listed)

    def test_publish_chown_delete(self, capsys, db, import_file):
        path, dataset_id = import_file
        self._run(capsys, "--db", db, "import", path)

        assert self._run(capsys, "--db", db, "publish", dataset_id, "--owner", OWNER)[0] == 0
        assert json.loads(self._run(capsys, "--db", db, "get", dataset_id)[1])["published"] is True

        assert self._run(capsys, "--db", db, "chown", dataset_id, OTHER)[0] == 0

        code, _, err = self._run(capsys, "--db", db, "delete", dataset_id, "--owner", OWNER)
        assert code == 1
        assert "NOT_OWNER" in err

        assert self._run(capsys, "--db", db, "delete", dataset_id, "--owner", OTHER)[0] == 0

    def test_missing_dataset(self, capsys, db):
        code, _, err = self._run(capsys, "--db", db, "get", str(uuid.uuid4()))
        assert code == 1
        assert "NOT_FOUND" in err

    def test_init(self, capsys, db):
        code, out, _ = self._run(capsys, "--db", db, "init")
        assert code == 0
        assert os.path.exists(db)

    @pytest.mark.parametrize(
        "content, message",
        [
            ("[{\"family\": 1, \"schema\": \"generic-v1\", \"blob\": {}}]", "missing 'creator'"),
            ("[{\"family\": 1, \"schema\": \"generic-v1\", \"blob\": {}, \"creator\": \"nope\"}]", "Entry 1 is malformed"),
            ("[{not json", "Malformed JSON"),
            ("{\"family\": 1}", "JSON list"),
        ],
    )
    def test_import_bad_file(self, capsys, db, data_dir, content, message):
        """Unusable import files are argument errors and store nothing."""
        path = os.path.join(data_dir, "bad.json")
        with open(path, "w") as f:
            f.write(content)

        code, _, err = self._run(capsys, "--db", db, "import", path)
        assert code == 2
        assert message in err

        assert json.loads(self._run(capsys, "--db", db, "list", "--owner", OWNER)[1]) == []

    def test_import_missing_file(self, capsys, db, data_dir):
        code, _, err = self._run(capsys, "--db", db, "import", os.path.join(data_dir, "absent.json"))
        assert code == 2
        assert "Cannot read" in err
