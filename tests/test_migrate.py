from enswatch.db.migrate import SCHEMA_PATH, _load_statements


def test_schema_splits_into_statements():
    statements = list(_load_statements(SCHEMA_PATH.read_text()))
    tables = [stmt for stmt in statements if stmt.startswith("CREATE TABLE")]
    assert len(tables) == 4
    for name in ("ens_bids", "processed_sales", "ens_registrations", "system_state"):
        assert any(f"CREATE TABLE IF NOT EXISTS {name} " in stmt for stmt in tables)
    assert all(stmt.rstrip().endswith(";") for stmt in statements)
    assert not any(stmt.lstrip().startswith("--") for stmt in statements)


def test_inline_comments_and_trailing_statement():
    sql = "-- header\nCREATE TABLE a (id INT);\n\nINSERT INTO a VALUES (1)"
    assert list(_load_statements(sql)) == ["CREATE TABLE a (id INT);", "INSERT INTO a VALUES (1)"]
