from offsite_api.storage.hybrid_provider import HybridStorageProvider
from offsite_api.storage.local_provider import LocalStorageProvider
from offsite_api.storage.provider import make_key

from conftest import FailingStorage


def test_key_stays_inside_folder():
    key = make_key("receipts", "../../etc/passwd")
    folder, _, name = key.partition("/")
    assert folder == "receipts"
    assert "/" not in name and ".." not in name


def test_local_store_round_trip(tmp_path):
    local = LocalStorageProvider(str(tmp_path), "http://files.test")
    url = local.store(b"%PDF-1.4", "contractor/invoices", "OS/CI/2025-26/0001.pdf", "application/pdf")
    assert url.startswith("http://files.test/files/contractor/invoices/")
    key = url.split("/files/", 1)[1]
    assert tmp_path.joinpath(key).read_bytes() == b"%PDF-1.4"


def test_hybrid_falls_back_when_primary_is_down(tmp_path):
    hybrid = HybridStorageProvider(FailingStorage(), LocalStorageProvider(str(tmp_path)))
    url = hybrid.store(b"jpeg", "receipts", "bill.jpg", "image/jpeg")
    assert url.startswith("/files/receipts/")
    assert any(tmp_path.joinpath("receipts").iterdir())
