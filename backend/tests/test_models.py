from repeet.models import AttemptRow, Base, ProblemRow, UserSettingsRow, schema_statements


def test_tables_are_created_in_dependency_order():
    assert [table.name for table in Base.metadata.sorted_tables][0] == "problems"
    assert {ProblemRow.__tablename__, AttemptRow.__tablename__, UserSettingsRow.__tablename__} == set(
        Base.metadata.tables
    )


def test_ddl_cascades_attempts_with_their_problem():
    ddl = "\n".join(schema_statements())

    assert "CREATE TABLE IF NOT EXISTS problems" in ddl
    assert "CREATE TABLE IF NOT EXISTS attempts" in ddl
    assert "REFERENCES problems (id) ON DELETE CASCADE" in ddl
    assert "ON DELETE SET NULL" in ddl


def test_ddl_enforces_lifecycle_and_queue_uniqueness():
    statements = schema_statements()
    ddl = "\n".join(statements)

    assert "ck_problems_lifecycle" in ddl
    assert "rating BETWEEN 1 AND 5" in ddl
    unique_index = next(s for s in statements if "idx_problems_user_queue_position" in s)
    assert unique_index.startswith("CREATE UNIQUE INDEX IF NOT EXISTS")
    assert "WHERE queue_position IS NOT NULL" in unique_index
