"""
Unit tests for DDL synthesis.
"""

import pytest

from pgpatch.database.introspection import ConstraintMeta, ConstraintType, SequenceMeta
from pgpatch.schema.ddl import (
    ConstraintClassification,
    compare_columns,
    compare_constraints,
    compare_indexes,
    create_sequence_sql,
    extract_sequence_name,
    generate_create_table,
    render_column_definition,
    resolve_index_definition,
)
from pgpatch.schema.operations import ChangeType, get_change_summary, render_changes

from tests.conftest import column, foreign_key, index, primary_key


@pytest.fixture
def users_seq():
    return SequenceMeta(
        schema="public",
        name="users_id_seq",
        data_type="integer",
        start_value=1,
        min_value=1,
        max_value=2147483647,
        increment_by=1,
        cycle=False,
        cache_size=1,
    )


def lookup_returning(sequence):
    calls = []

    async def lookup(name):
        calls.append(name)
        return sequence

    lookup.calls = calls
    return lookup


class TestRenderColumnDefinition:

    def test_plain_column(self):
        assert render_column_definition(column("age")) == "int4"

    def test_varchar_not_null(self):
        definition = render_column_definition(column("email", "varchar", nullable=False, length=255))
        assert definition == "varchar(255) NOT NULL"

    def test_serial_from_default(self):
        col = column("id", nullable=False, default="nextval('users_id_seq'::regclass)")
        assert render_column_definition(col) == "serial4 NOT NULL"

    def test_bigserial_from_serial_sequence(self):
        col = column("id", "int8", nullable=False, serial_sequence="public.events_id_seq")
        assert render_column_definition(col) == "serial8 NOT NULL"

    def test_plain_default(self):
        col = column("active", "bool", default="true")
        assert render_column_definition(col) == "bool DEFAULT true"

    def test_sequence_default_on_text_column_is_dropped(self):
        col = column("code", "text", default="('C'::text || nextval('code_seq'::regclass))")
        assert render_column_definition(col) == "text"

    def test_numeric_precision(self):
        col = column("amount", "numeric")
        col.numeric_precision, col.numeric_scale = 10, 2
        assert render_column_definition(col) == "numeric(10,2)"


class TestCompareColumns:

    @pytest.mark.asyncio
    async def test_add_column_and_missing_sequence(self, users_seq):
        desired = [
            column("id", default="nextval('x_seq'::regclass)"),
            column("email", "varchar", nullable=False, length=255),
        ]
        current = [column("id")]
        lookup = lookup_returning(users_seq)

        changes = await compare_columns("users", desired, current, lookup)
        sql = render_changes(changes)

        assert "ALTER TABLE users ADD COLUMN IF NOT EXISTS email varchar(255) NOT NULL;" in sql
        assert lookup.calls == ["x_seq"]
        assert "CREATE SEQUENCE IF NOT EXISTS public.users_id_seq" in sql
        assert "ALTER TABLE users ALTER COLUMN id SET DEFAULT nextval('x_seq'::regclass);" in sql
        assert sql.index("CREATE SEQUENCE") < sql.index("SET DEFAULT")

    @pytest.mark.asyncio
    async def test_no_sequence_when_present_on_target(self):
        desired = [column("id", default="nextval('x_seq'::regclass)")]
        current = [column("id")]

        changes = await compare_columns("users", desired, current, lookup_returning(None))

        assert ChangeType.CREATE_SEQUENCE not in {c.change_type for c in changes}

    @pytest.mark.asyncio
    async def test_drop_add_modify_order(self):
        desired = [column("id"), column("name", "varchar", length=200), column("new_col", "text")]
        current = [column("id"), column("name", "varchar", length=100), column("old_col", "text")]

        changes = await compare_columns("users", desired, current)

        assert [c.change_type for c in changes] == [
            ChangeType.DROP_COLUMN,
            ChangeType.ADD_COLUMN,
            ChangeType.MODIFY_COLUMN,
        ]
        assert changes[0].sql == "ALTER TABLE users DROP COLUMN IF EXISTS old_col CASCADE;"
        assert changes[0].is_destructive
        assert changes[2].sql == "ALTER TABLE users ALTER COLUMN name TYPE varchar(200);"

    @pytest.mark.asyncio
    async def test_nullability_and_default_changes(self):
        desired = [column("status", "text", nullable=False)]
        current = [column("status", "text", default="'new'::text")]

        changes = await compare_columns("orders", desired, current)

        assert [c.sql for c in changes] == [
            "ALTER TABLE orders ALTER COLUMN status SET NOT NULL;",
            "ALTER TABLE orders ALTER COLUMN status DROP DEFAULT;",
        ]

    @pytest.mark.asyncio
    async def test_drop_not_null(self):
        changes = await compare_columns(
            "orders", [column("note", "text")], [column("note", "text", nullable=False)]
        )
        assert changes[0].sql == "ALTER TABLE orders ALTER COLUMN note DROP NOT NULL;"

    @pytest.mark.asyncio
    async def test_identical_columns(self):
        cols = [column("id", nullable=False), column("email", "varchar", length=255)]
        assert await compare_columns("users", cols, list(cols)) == []

    @pytest.mark.asyncio
    async def test_applying_changes_leaves_no_add_or_drop(self):
        desired = [column("id"), column("email", "varchar", length=255), column("age")]
        current = [column("id"), column("legacy", "text")]

        changes = await compare_columns("users", desired, current)
        added = {c.target_object for c in changes if c.change_type == ChangeType.ADD_COLUMN}
        dropped = {c.target_object for c in changes if c.change_type == ChangeType.DROP_COLUMN}

        patched = [c for c in current if c.name not in dropped] + [c for c in desired if c.name in added]
        rediff = await compare_columns("users", desired, patched)

        assert not {ChangeType.ADD_COLUMN, ChangeType.DROP_COLUMN} & {c.change_type for c in rediff}


class TestCompareConstraints:

    def test_add_drop_and_redefine(self):
        desired = [
            primary_key("users_pkey", "id"),
            ConstraintMeta("users_email_key", ConstraintType.UNIQUE, "UNIQUE (email)"),
            ConstraintMeta("age_check", ConstraintType.CHECK, "CHECK ((age > 0))"),
        ]
        current = [
            primary_key("users_pkey", "id"),
            ConstraintMeta("age_check", ConstraintType.CHECK, "CHECK ((age >= 0))"),
            ConstraintMeta("stale_check", ConstraintType.CHECK, "CHECK (true)"),
        ]

        changes, classification = compare_constraints("users", desired, current)

        assert [c.sql for c in changes] == [
            "ALTER TABLE users DROP CONSTRAINT IF EXISTS age_check CASCADE;",
            "ALTER TABLE users DROP CONSTRAINT IF EXISTS stale_check CASCADE;",
            "ALTER TABLE users ADD CONSTRAINT users_email_key UNIQUE (email);",
            "ALTER TABLE users ADD CONSTRAINT age_check CHECK ((age > 0));",
        ]
        assert classification.primary == {"users_pkey"}
        assert classification.unique == {"users_email_key"}

    def test_no_changes(self):
        constraints = [primary_key("users_pkey", "id")]
        changes, classification = compare_constraints("users", constraints, constraints)

        assert changes == []
        assert classification.is_constraint_backed("users_pkey")


class TestCompareIndexes:

    def test_constraint_backed_index_is_never_emitted(self):
        desired = [index("users_pkey", "CREATE UNIQUE INDEX users_pkey ON public.users USING btree (id)")]
        current = [index("users_pkey", "CREATE UNIQUE INDEX users_pkey ON public.users USING btree (id, tenant_id)")]
        classification = ConstraintClassification(primary={"users_pkey"})

        assert compare_indexes("users", desired, current, classification) == []

    def test_create_and_drop(self):
        desired = [index("users_email_idx", "CREATE INDEX users_email_idx ON public.users USING btree (email)")]
        current = [index("users_old_idx", "CREATE INDEX users_old_idx ON public.users USING btree (old)")]

        changes = compare_indexes("users", desired, current, ConstraintClassification())

        assert [c.sql for c in changes] == [
            "DROP INDEX IF EXISTS users_old_idx;",
            "CREATE INDEX IF NOT EXISTS users_email_idx ON users USING btree (email);",
        ]

    def test_changed_definition_is_recreated(self):
        desired = [index("idx", "CREATE INDEX idx ON public.users USING btree (a, b)")]
        current = [index("idx", "CREATE INDEX idx ON public.users USING btree (a)")]

        changes = compare_indexes("users", desired, current, ConstraintClassification())

        assert [c.change_type for c in changes] == [ChangeType.DROP_INDEX, ChangeType.CREATE_INDEX]


class TestResolveIndexDefinition:

    def test_unique_index(self):
        definition = "CREATE UNIQUE INDEX users_email_key ON public.users USING btree (email)"
        assert resolve_index_definition(definition) == (
            "CREATE UNIQUE INDEX IF NOT EXISTS users_email_key ON users USING btree (email)"
        )

    def test_other_schema(self):
        definition = "CREATE INDEX idx ON sales.orders USING btree (public_id)"
        assert resolve_index_definition(definition, "sales") == (
            "CREATE INDEX IF NOT EXISTS idx ON orders USING btree (public_id)"
        )

    def test_already_idempotent(self):
        definition = "CREATE INDEX IF NOT EXISTS idx ON users USING btree (a)"
        assert resolve_index_definition(definition) == definition


class TestCreateTable:

    def test_generate_create_table(self):
        columns = [
            column("id", nullable=False, default="nextval('users_id_seq'::regclass)"),
            column("email", "varchar", length=255),
        ]
        constraints = [primary_key("users_pkey", "id")]
        indexes = [
            index("users_pkey", "CREATE UNIQUE INDEX users_pkey ON public.users USING btree (id)"),
            index("users_email_idx", "CREATE INDEX users_email_idx ON public.users USING btree (email)"),
        ]

        sql, classification = generate_create_table("users", columns, constraints, indexes)

        assert sql == (
            "CREATE TABLE IF NOT EXISTS users (\n"
            "  id serial4 NOT NULL,\n"
            "  email varchar(255),\n"
            "  CONSTRAINT users_pkey PRIMARY KEY (id)\n"
            ");\n"
            "CREATE INDEX IF NOT EXISTS users_email_idx ON users USING btree (email);"
        )
        assert classification.primary == {"users_pkey"}

    def test_without_indexes(self):
        sql, _ = generate_create_table(
            "orders", [column("id")], [foreign_key("orders_user_fk", "user_id", "users")], []
        )
        assert sql.endswith("  CONSTRAINT orders_user_fk FOREIGN KEY (user_id) REFERENCES users(id)\n);")


class TestSequences:

    def test_create_sequence_sql(self, users_seq):
        assert create_sequence_sql(users_seq) == (
            "CREATE SEQUENCE IF NOT EXISTS public.users_id_seq\n"
            " AS integer\n"
            " START WITH 1\n"
            " INCREMENT BY 1\n"
            " MINVALUE 1\n"
            " MAXVALUE 2147483647\n"
            " CACHE 1\n"
            " NO CYCLE;"
        )

    def test_cycle(self, users_seq):
        users_seq.cycle = True
        assert create_sequence_sql(users_seq).endswith(" CYCLE;")

    def test_extract_sequence_name(self):
        assert extract_sequence_name("nextval('public.users_id_seq'::regclass)") == "public.users_id_seq"
        assert extract_sequence_name("0") is None


def test_change_summary():
    changes, _ = compare_constraints("t", [primary_key("t_pkey", "id")], [])
    assert get_change_summary(changes) == {"add_constraint": 1}
