from __future__ import annotations

from datetime import datetime

import pytest

from pg_cutover import statements
from pg_cutover.domain.models import CutoverTarget, IndexInfo, PartitionRange, TriggerInfo

LOWER = "'2019-01-01 00:00:00'"
UPPER = "'2024-07-01 00:00:00'"


@pytest.fixture
def target() -> CutoverTarget:
    return CutoverTarget(
        schema_name="public",
        table="transaction",
        id_column="id",
        partition_column="created_at",
        legacy_range=PartitionRange(
            name="transaction_old", start=datetime(2019, 1, 1), end=datetime(2024, 7, 1)
        ),
    )


def _sql(stmt) -> str:
    return stmt.as_string(None)


def test_unique_index_is_built_concurrently(target):
    text = _sql(statements.create_unique_index_concurrently(target))
    assert text == (
        'CREATE UNIQUE INDEX CONCURRENTLY IF NOT EXISTS "transaction_id_created_at_uidx" '
        'ON "public"."transaction" ("id", "created_at")'
    )


def test_check_constraint_is_not_valid_and_requires_not_null(target):
    text = _sql(statements.add_check_not_valid(target))
    assert text.startswith(
        'ALTER TABLE "public"."transaction" ADD CONSTRAINT "transaction_created_at_range_check" CHECK ('
    )
    assert '"created_at" IS NOT NULL' in text
    assert f'"created_at" >= {LOWER}' in text
    assert f'"created_at" < {UPPER}' in text
    assert text.endswith("NOT VALID")


def test_check_and_attach_carry_identical_bound_literals(target):
    check = _sql(statements.add_check_not_valid(target))
    attach = _sql(statements.attach_partition(target, target.legacy_range))

    assert attach == (
        'ALTER TABLE "public"."transaction" ATTACH PARTITION "public"."transaction_old" '
        f"FOR VALUES FROM ({LOWER}) TO ({UPPER})"
    )
    for literal in (LOWER, UPPER):
        assert literal in check
        assert literal in attach


def test_validate_check_targets_named_constraint(target):
    assert _sql(statements.validate_check(target)) == (
        'ALTER TABLE "public"."transaction" VALIDATE CONSTRAINT "transaction_created_at_range_check"'
    )


def test_partitioned_shell_copies_defaults_and_partitions_by_range(target):
    text = _sql(statements.create_partitioned_shell(target))
    assert text.startswith('CREATE TABLE "public"."transaction_partitioned" (LIKE "public"."transaction"')
    assert "INCLUDING DEFAULTS" in text
    assert text.endswith('PARTITION BY RANGE ("created_at")')


def test_shell_primary_key_is_widened(target):
    assert _sql(statements.add_shell_primary_key(target)).endswith('PRIMARY KEY ("id", "created_at")')


def test_promote_unique_index_uses_existing_index(target):
    assert _sql(statements.promote_unique_index(target)) == (
        'ALTER TABLE "public"."transaction_old" ADD CONSTRAINT "transaction_old_pkey" '
        'PRIMARY KEY USING INDEX "transaction_id_created_at_uidx"'
    )


def test_lock_source_is_access_exclusive(target):
    assert _sql(statements.lock_source(target)) == (
        'LOCK TABLE "public"."transaction" IN ACCESS EXCLUSIVE MODE'
    )


def test_create_parent_index_copies_the_source_definition(target):
    index = IndexInfo(
        name="transaction_biller_id_created_at_idx",
        columns=("biller_id", "created_at"),
        definition=(
            "CREATE INDEX transaction_biller_id_created_at_idx ON public.transaction "
            "USING btree (biller_id, created_at DESC)"
        ),
    )
    assert _sql(statements.create_parent_index(target, index)) == (
        'CREATE INDEX "transaction_biller_id_created_at_idx_p" ON "public"."transaction_partitioned" '
        "USING btree (biller_id, created_at DESC)"
    )


def test_create_parent_index_keeps_include_columns_out_of_the_key(target):
    index = IndexInfo(
        name="transaction_status_inc_idx",
        columns=("status",),
        include_columns=("msg_id",),
        definition=(
            "CREATE INDEX transaction_status_inc_idx ON public.transaction "
            "USING btree (status) INCLUDE (msg_id) WITH (fillfactor='80')"
        ),
    )
    text = _sql(statements.create_parent_index(target, index))
    assert text.endswith("USING btree (status) INCLUDE (msg_id) WITH (fillfactor='80')")
    assert "(status, msg_id)" not in text


def test_create_parent_index_keeps_uniqueness_and_quoted_names(target):
    index = IndexInfo(
        name="Txn Ref",
        columns=("txn_ref_id", "created_at"),
        is_unique=True,
        definition=(
            'CREATE UNIQUE INDEX "Txn Ref" ON public."transaction" '
            'USING btree (txn_ref_id, created_at COLLATE "C" text_pattern_ops)'
        ),
    )
    text = _sql(statements.create_parent_index(target, index))
    assert text.startswith('CREATE UNIQUE INDEX "Txn Ref_p" ON "public"."transaction_partitioned" ')
    assert text.endswith('USING btree (txn_ref_id, created_at COLLATE "C" text_pattern_ops)')


def test_create_parent_index_rejects_unparseable_definition(target):
    index = IndexInfo(name="odd", columns=("api",), definition="not an index definition")
    assert not statements.can_mirror_definition(index)
    with pytest.raises(ValueError, match="Cannot parse index definition"):
        statements.create_parent_index(target, index)


def test_parent_index_names_differ_for_indexes_on_the_same_columns():
    btree = IndexInfo(name="transaction_created_btree", columns=("created_at",))
    brin = IndexInfo(name="transaction_created_brin", columns=("created_at",), method="brin")
    assert statements.parent_index_name(btree) != statements.parent_index_name(brin)


def test_parent_index_name_stays_within_identifier_limit():
    index = IndexInfo(name="very_long_index_name_" + "x" * 42, columns=("api",))
    name = statements.parent_index_name(index)
    assert len(name.encode("utf-8")) <= 63
    assert name.startswith("very_long_index_name_")
    assert name.endswith("_p")


def test_parent_index_name_truncates_on_character_boundary():
    long_a = IndexInfo(name="indice_" + "é" * 30 + "_a", columns=("api",))
    long_b = IndexInfo(name="indice_" + "é" * 30 + "_b", columns=("api",))
    name_a = statements.parent_index_name(long_a)
    name_b = statements.parent_index_name(long_b)

    assert len(name_a.encode("utf-8")) <= 63
    # "_<8 hex>_p" follows the cut prefix, which must be whole characters.
    assert long_a.name.startswith(name_a[: -len("_12345678_p")])
    assert name_a != name_b


def test_future_partition_uses_partition_of(target):
    rng = PartitionRange(
        name="transaction_p2024_07", start=datetime(2024, 7, 1), end=datetime(2024, 8, 1)
    )
    assert _sql(statements.create_partition(target, rng)) == (
        'CREATE TABLE IF NOT EXISTS "public"."transaction_p2024_07" PARTITION OF "public"."transaction" '
        "FOR VALUES FROM ('2024-07-01 00:00:00') TO ('2024-08-01 00:00:00')"
    )


def test_retarget_trigger_rewrites_relation_only():
    trigger = TriggerInfo(
        name="transaction_touch_modified_at",
        definition=(
            'CREATE TRIGGER transaction_touch_modified_at BEFORE UPDATE ON public."transaction" '
            "FOR EACH ROW EXECUTE FUNCTION transaction_touch_modified_at()"
        ),
    )
    text = _sql(statements.retarget_trigger(trigger, "public", "transaction"))
    assert text == (
        'CREATE TRIGGER transaction_touch_modified_at BEFORE UPDATE ON "public"."transaction" '
        "FOR EACH ROW EXECUTE FUNCTION transaction_touch_modified_at()"
    )


def test_retarget_trigger_handles_update_of_columns():
    trigger = TriggerInfo(
        name="audit",
        definition=(
            "CREATE TRIGGER audit AFTER INSERT OR UPDATE OF status ON public.transaction_old "
            "FOR EACH ROW WHEN ((new.status IS NOT NULL)) EXECUTE FUNCTION audit_fn()"
        ),
    )
    text = _sql(statements.retarget_trigger(trigger, "public", "transaction"))
    assert 'UPDATE OF status ON "public"."transaction" FOR EACH ROW WHEN' in text


def test_retarget_trigger_rejects_unparseable_definition():
    trigger = TriggerInfo(name="weird", definition="SOMETHING ELSE")
    with pytest.raises(ValueError, match="Cannot parse trigger definition"):
        statements.retarget_trigger(trigger, "public", "transaction")


def test_set_sequence_owner_keeps_quoted_sequence_name():
    text = _sql(
        statements.set_sequence_owner('public."transaction_id_seq"', "public", "transaction", "id")
    )
    assert text == 'ALTER SEQUENCE public."transaction_id_seq" OWNED BY "public"."transaction"."id"'


def test_pruning_probe_is_bounded_explain_analyze(target):
    text = _sql(statements.pruning_probe(target, "2024-06-01 00:00:00", "2024-07-01 00:00:00"))
    assert text.startswith("EXPLAIN (ANALYZE, FORMAT JSON) SELECT * FROM \"public\".\"transaction\"")
    assert "\"created_at\" >= '2024-06-01 00:00:00'" in text
    assert "\"created_at\" < '2024-07-01 00:00:00'" in text


def test_render_returns_one_string_per_statement(target):
    rendered = statements.render(
        [statements.validate_check(target), statements.lock_source(target)]
    )
    assert len(rendered) == 2
    assert all(isinstance(text, str) for text in rendered)
