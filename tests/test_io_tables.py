"""Tests du module I/O tableurs."""

import json
from pathlib import Path

import pandas as pd
import pytest

from specimatch.config import EmptySourceError
from specimatch.io_tables import (
    TableFileError,
    list_sheets,
    load_candidates,
    load_source_rows,
    load_table,
)
from specimatch.matching.schema import CandidateSpecimen


def test_list_sheets(tmp_path: Path) -> None:
    path = tmp_path / "test.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as w:
        pd.DataFrame({"a": [1]}).to_excel(w, sheet_name="Feuille1", index=False)
        pd.DataFrame({"x": [1]}).to_excel(w, sheet_name="Feuille2", index=False)
    assert list_sheets(path) == ["Feuille1", "Feuille2"]


def test_list_sheets_csv(tmp_path: Path) -> None:
    path = tmp_path / "meta.csv"
    path.write_text("Tube,Age\nT1,40\n", encoding="utf-8")
    assert list_sheets(path) == ["(données)"]


def test_load_table_keeps_text(tmp_path: Path) -> None:
    path = tmp_path / "meta.csv"
    path.write_text("Tube,Dose,Notes\n 01_T1 ,007.50,\nT2,NA,ok\n", encoding="utf-8")
    df = load_table(path)
    assert df["Tube"].tolist() == ["01_T1", "T2"]
    assert df["Dose"].tolist() == ["007.50", "NA"]
    assert df["Notes"].tolist() == ["", "ok"]


def test_load_table_semicolon(tmp_path: Path) -> None:
    path = tmp_path / "meta.csv"
    path.write_text("Tube;Age\nT1;40\nT2;41\n", encoding="utf-8")
    assert list(load_table(path).columns) == ["Tube", "Age"]


def test_load_table_tsv(tmp_path: Path) -> None:
    path = tmp_path / "meta.tsv"
    path.write_text("Tube\tSite, city\nT1\tLyon, FR\n", encoding="utf-8")
    df = load_table(path)
    assert list(df.columns) == ["Tube", "Site, city"]
    assert df.iloc[0]["Site, city"] == "Lyon, FR"


def test_load_table_latin1(tmp_path: Path) -> None:
    path = tmp_path / "meta.csv"
    path.write_bytes("Tube,Site\nT1,Hôpital\n".encode("latin-1"))
    assert load_table(path).iloc[0]["Site"] == "Hôpital"


def test_load_table_header_row(tmp_path: Path) -> None:
    path = tmp_path / "meta.xlsx"
    pd.DataFrame([["Export LIMS", ""], ["Tube", "Age"], ["T1", "40"]]).to_excel(
        path, index=False, header=False, engine="openpyxl"
    )
    df = load_table(path, header_row=2)
    assert list(df.columns) == ["Tube", "Age"]
    assert df.iloc[0]["Age"] == "40"


def test_load_source_rows(tmp_path: Path) -> None:
    path = tmp_path / "meta.csv"
    path.write_text("Tube,Age\nT1,40\n,\nT2,\n", encoding="utf-8")
    rows = load_source_rows(path)
    assert rows.headers == ("Tube", "Age")
    assert [dict(r) for r in rows] == [{"Tube": "T1", "Age": "40"}, {"Tube": "T2", "Age": ""}]


def test_load_source_rows_header_only(tmp_path: Path) -> None:
    path = tmp_path / "meta.csv"
    path.write_text("Tube,Age\n", encoding="utf-8")
    with pytest.raises(EmptySourceError, match="au moins une ligne"):
        load_source_rows(path)


def test_load_candidates_json(tmp_path: Path) -> None:
    path = tmp_path / "specimens.json"
    path.write_text(json.dumps({"specimens": [{"id": 1, "tube_id": "T1", "specimen_number": None}]}), encoding="utf-8")
    assert load_candidates(path) == [CandidateSpecimen(id=1, tube_id="T1", specimen_number=None)]


def test_load_candidates_csv(tmp_path: Path) -> None:
    path = tmp_path / "specimens.csv"
    path.write_text("id,tube_id,specimen_number\nu1,T1,\nu2,,S2\n", encoding="utf-8")
    assert load_candidates(path) == [
        CandidateSpecimen(id="u1", tube_id="T1", specimen_number=None),
        CandidateSpecimen(id="u2", tube_id=None, specimen_number="S2"),
    ]


def test_load_candidates_missing_id(tmp_path: Path) -> None:
    path = tmp_path / "specimens.json"
    path.write_text(json.dumps([{"tube_id": "T1"}]), encoding="utf-8")
    with pytest.raises(TableFileError, match="invalide"):
        load_candidates(path)
