"""Tests for the command-line interface."""

import json

import pytest

from gst_engine.cli import main

ORDERS = {
    "tenant": {
        "tenant_id": "shop-1",
        "seller_name": "Acme Retail",
        "seller_jurisdiction": "27",
        "seller_tax_id": "27AAPFU0939F1ZV",
        "invoice_prefix": "INV",
    },
    "orders": [
        {
            "id": "1001",
            "customer": {"name": "Asha"},
            "billing_address": {"province": "Delhi"},
            "items": [{"description": "Shirt", "quantity": 2, "unit_price": "500"}],
        },
        {
            "id": "1002",
            "billing_address": {"province": "Maharashtra"},
            "items": [{"description": "Mug", "quantity": 1, "unit_price": "250"}],
        },
    ],
}


@pytest.fixture
def order_file(tmp_path):
    path = tmp_path / "orders.json"
    path.write_text(json.dumps(ORDERS), encoding="utf-8")
    return path


def test_split_command(capsys):
    main(["split", "--seller", "MH", "--buyer", "DL", "--item", "Shirt:2:500"])
    out = capsys.readouterr().out
    assert "Inter-state" in out
    assert "1,180.00" in out


def test_split_rejects_bad_item():
    with pytest.raises(SystemExit) as excinfo:
        main(["split", "--seller", "MH", "--item", "Shirt:0:500"])
    assert excinfo.value.code == 1


def test_jurisdiction_lookup(capsys):
    main(["jurisdictions", "--lookup", "Karnataka"])
    assert "29" in capsys.readouterr().out


def test_bulk_command_exports(order_file, tmp_path, capsys):
    main(
        [
            "bulk",
            "--file", str(order_file),
            "--ids", "1001,1002,9999",
            "--output-dir", str(tmp_path),
            "--export-csv", "batch.csv",
            "--export-json", "summary.json",
        ]
    )
    out = capsys.readouterr().out
    assert "INV-000" in out
    csv_text = (tmp_path / "batch.csv").read_text(encoding="utf-8")
    assert "RecordNotFound" in csv_text
    summary = json.loads((tmp_path / "summary.json").read_text(encoding="utf-8"))
    assert summary["batch"]["summary"]["success_count"] == 2
    assert summary["gst"]["summary"]["total_documents"] == 2


def test_bulk_unconfigured_tenant_exits(tmp_path):
    data = dict(ORDERS, tenant={"tenant_id": "shop-1"})
    path = tmp_path / "orders.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        main(["bulk", "--file", str(path)])
    assert excinfo.value.code == 1


def test_import_command(tmp_path, capsys):
    path = tmp_path / "customers.csv"
    path.write_text(
        "name,email\r\nAsha,asha@example.com\r\nRavi,bad\r\n", encoding="utf-8"
    )
    main(["import", "--file", str(path)])
    out = capsys.readouterr().out
    assert "1 of 2 rows accepted" in out
    assert "Rejected Rows" in out


def test_split_rejects_bad_rate():
    with pytest.raises(SystemExit) as excinfo:
        main(["split", "--seller", "MH", "--rate", "abc", "--item", "Shirt:1:500"])
    assert excinfo.value.code == 1


def test_bulk_rejects_malformed_json(tmp_path):
    path = tmp_path / "orders.json"
    path.write_text('{"tenant": ', encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        main(["bulk", "--file", str(path)])
    assert excinfo.value.code == 1


def test_bulk_rejects_file_without_tenant(tmp_path):
    path = tmp_path / "orders.json"
    path.write_text(json.dumps({"orders": ORDERS["orders"]}), encoding="utf-8")
    with pytest.raises(SystemExit) as excinfo:
        main(["bulk", "--file", str(path)])
    assert excinfo.value.code == 1
