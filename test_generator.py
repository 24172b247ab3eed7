import os

import pytest

from conftest import FailingRasterizer, png_bytes
from errors import PreconditionError, RenderError
from generator import BatchGenerator
from layouts import FieldPosition
from ledger import CertificateLedger
from persistence import JsonDocument

LAYOUT = {"Name": FieldPosition(x=50, y=45), "Email": FieldPosition(x=50, y=60, fontSize=18)}


@pytest.fixture
def ledger_path(tmp_path):
    return str(tmp_path / "db.json")


@pytest.fixture
def ledger(ledger_path):
    return CertificateLedger(JsonDocument(ledger_path))


@pytest.fixture
def out_dir(tmp_path):
    return str(tmp_path / "certificates")


def _generate(generator, records, mapping=None):
    return generator.generate(
        records,
        LAYOUT,
        mapping or {"Name": "Name", "Email": "Email"},
        png_bytes(),
        "template1",
        "gold.png",
    )


def test_blank_email_rows_are_skipped(ledger, out_dir):
    records = [{"Name": "Ana", "Email": "ana@x.com"}, {"Name": "Bo", "Email": ""}]
    result = _generate(BatchGenerator(ledger, out_dir), records)

    assert result.skippedCount == 1
    assert result.emailColumn == "Email"
    assert len(result.records) == 1

    record = result.records[0]
    assert record.email == "ana@x.com"
    assert record.data == {"Name": "Ana", "Email": "ana@x.com"}
    assert record.file_name == f"ana@x.com_{result.batchId}_1.png"
    assert record.certificate_id == f"template1_{result.batchId}_1"
    assert record.template_file == "gold.png"
    assert os.path.exists(os.path.join(out_dir, record.file_name))
    assert ledger.find_by_email("ANA@X.COM") == result.records


def test_n_rows_with_k_missing_emails(ledger, out_dir):
    records = [
        {"Name": "A", "Email": "a@x.com"},
        {"Name": "B", "Email": None},
        {"Name": "C", "Email": "c@x.com"},
        {"Name": "D"},
        {"Name": "E", "Email": "   "},
        {"Name": "F", "Email": "f@x.com"},
    ]
    result = _generate(BatchGenerator(ledger, out_dir), records)

    assert len(result.records) == 3
    assert result.skippedCount == 3
    # Row index in the file name follows the spreadsheet row, not the output position
    assert [r.file_name.rsplit("_", 1)[1] for r in result.records] == ["1.png", "3.png", "6.png"]
    assert len(ledger) == 3


def test_missing_email_column_aborts_before_rendering(ledger, out_dir):
    rasterizer = FailingRasterizer(fail_on=0)
    with pytest.raises(PreconditionError):
        _generate(BatchGenerator(ledger, out_dir, rasterizer=rasterizer), [{"Name": "Ana"}], {"Name": "Name"})
    assert rasterizer.calls == 0
    assert len(ledger) == 0


def test_render_failure_discards_whole_batch(ledger, ledger_path, out_dir):
    records = [{"Name": n, "Email": f"{n}@x.com"} for n in ("ana", "bo", "cy")]
    generator = BatchGenerator(ledger, out_dir, rasterizer=FailingRasterizer(fail_on=2))

    with pytest.raises(RenderError):
        _generate(generator, records)

    assert len(ledger) == 0
    assert not os.path.exists(ledger_path)
    assert os.listdir(out_dir) == []


def test_failed_batch_keeps_earlier_batches(ledger, out_dir):
    _generate(BatchGenerator(ledger, out_dir), [{"Name": "Ana", "Email": "ana@x.com"}])
    failing = BatchGenerator(ledger, out_dir, rasterizer=FailingRasterizer(fail_on=1))
    with pytest.raises(RenderError):
        _generate(failing, [{"Name": "Bo", "Email": "bo@x.com"}])

    assert [r.email for r in ledger.snapshot()] == ["ana@x.com"]
    assert len(os.listdir(out_dir)) == 1


def test_sequential_batches_never_reuse_file_names(ledger, out_dir, monkeypatch):
    monkeypatch.setattr("generator.time.time", lambda: 1700000000.0)
    generator = BatchGenerator(ledger, out_dir)
    records = [{"Name": "Ana", "Email": "ana@x.com"}]

    first = _generate(generator, records)
    second = _generate(generator, records)

    assert second.batchId > first.batchId
    assert first.records[0].file_name != second.records[0].file_name
    assert len(ledger.find_by_email("ana@x.com")) == 2


def test_batch_ids_continue_after_restart(ledger_path, out_dir, monkeypatch):
    monkeypatch.setattr("generator.time.time", lambda: 1700000000.0)
    records = [{"Name": "Ana", "Email": "ana@x.com"}]
    first = _generate(BatchGenerator(CertificateLedger(JsonDocument(ledger_path)), out_dir), records)
    second = _generate(BatchGenerator(CertificateLedger(JsonDocument(ledger_path)), out_dir), records)
    assert second.batchId == first.batchId + 1


def test_email_is_sanitized_for_file_name(ledger, out_dir):
    result = _generate(BatchGenerator(ledger, out_dir), [{"Name": "Ana", "Email": "ana b+x@x.com"}])
    record = result.records[0]
    assert record.email == "ana b+x@x.com"
    assert record.file_name.startswith("ana_b_x@x.com_")
