import pytest

from afm_backend.adapters.db import functions as m
from afm_backend.adapters.db.sqlite import Sqlite


def test_fold_strips_diacritics_and_case():
    assert m.fold("Été À Paris") == "ete a paris"
    assert m.fold("STRASSE") == "strasse"
    assert m.fold(None) is None


def test_like_prefix_escapes_wildcards():
    assert m.like_prefix("50%_off\\") == "50\\%\\_off\\\\%"
    assert m.like_prefix(None) is None


def test_strip_extension_only_removes_last_suffix():
    assert m.strip_extension("vacation-photo.jpg") == "vacation-photo"
    assert m.strip_extension("archive.tar.gz") == "archive.tar"
    assert m.strip_extension("README") == "README"


def test_build_fts_query_quotes_every_word():
    assert m.build_fts_query('dark AND "moody" NEAR(x') == '"dark"* "AND"* "moody"* "NEAR"* "x"*'
    assert m.build_fts_query("!!! -- ()") == ""
    assert m.build_fts_query("") == ""
    assert m.build_fts_query(" ".join(["w"] * 40)).count('"w"*') == m.MAX_FTS_TOKENS


def test_similarity_behaves_like_trigram_match():
    assert m.similarity("vacation", "vacation") == 1.0
    assert m.similarity("vacation", "vacaton") > 0.5
    assert m.similarity("vacation", "zebra") == 0.0
    assert m.similarity("", "x") == 0.0
    assert m.similarity(None, "x") is None


@pytest.mark.asyncio
async def test_functions_are_registered_on_connections(tmp_path):
    db = Sqlite(str(tmp_path / "fn.db"))
    res = await db.aquery(
        "SELECT afm_fold('Ça') AS folded, afm_strip_ext('a.png') AS stem, "
        "afm_like_prefix('x_') AS pattern, afm_fts_query('hi there') AS fts, "
        "afm_similarity('abc', 'abc') AS sim"
    )
    assert res.ok, res.error
    row = res.data[0]
    assert row == {"folded": "ca", "stem": "a", "pattern": "x\\_%", "fts": '"hi"* "there"*', "sim": 1.0}
    await db.aclose()
