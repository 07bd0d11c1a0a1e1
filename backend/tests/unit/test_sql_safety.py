"""Unit tests for the SQL safety enforcer and enrichment-field checks."""

import pytest

from semantic_query.application.services.sql_safety import (
    ColumnCountRule,
    DangerousKeywordRule,
    RowCapRule,
    SafetyContext,
    SchemaPrefixRule,
    SqlSafetyEnforcer,
    StatementTypeRule,
    default_rules,
    validate_and_enforce_sql_safety,
    validate_desired_fields,
    validate_enrichment_fields,
)
from semantic_query.application.services.sql_text import mask_sql, split_top_level


class TestValidateAndEnforceSqlSafety:
    def test_select_star_gets_cap_and_schema(self):
        result = validate_and_enforce_sql_safety("SELECT * FROM Assessment")

        assert result.is_valid
        assert result.modified_sql == "SELECT TOP 1000 * FROM rpt.Assessment"
        assert "Added TOP 1000 clause for safety" in result.warnings
        assert "Applied schema prefixing (rpt.) to table names" in result.warnings

    def test_delete_is_rejected_without_rewriting(self):
        result = validate_and_enforce_sql_safety("DELETE FROM Assessment")

        assert not result.is_valid
        assert result.modified_sql is None
        assert result.warnings == ["Query must start with SELECT or WITH"]

    def test_denylisted_substring_in_column_name_is_allowed(self):
        result = validate_and_enforce_sql_safety("SELECT id, createdByUserName FROM Assessment")

        assert result.is_valid
        assert not any("Dangerous" in w for w in result.warnings)

    def test_stacked_statement_is_rejected(self):
        result = validate_and_enforce_sql_safety("SELECT 1; DROP TABLE rpt.Patient")

        assert not result.is_valid
        assert "Dangerous SQL keyword detected: DROP" in result.warnings

    def test_procedure_prefixes_are_rejected(self):
        result = validate_and_enforce_sql_safety("SELECT 1; EXEC xp_cmdshell 'dir'")

        assert not result.is_valid
        assert "Dangerous SQL keyword detected: EXEC" in result.warnings
        assert "Dangerous SQL keyword detected: XP_" in result.warnings

    def test_keywords_inside_literals_and_comments_are_ignored(self):
        result = validate_and_enforce_sql_safety(
            "SELECT TOP 5 body FROM rpt.Note WHERE body = 'please DROP the dressing' -- update later"
        )

        assert result.is_valid
        assert result.warnings == []

    def test_existing_cap_is_kept(self):
        sql = "SELECT TOP 10 * FROM rpt.Patient"
        result = validate_and_enforce_sql_safety(sql)

        assert result.modified_sql == sql
        assert result.warnings == []

    def test_offset_counts_as_cap(self):
        sql = "SELECT id FROM rpt.Patient ORDER BY id OFFSET 0 ROWS FETCH NEXT 5 ROWS ONLY"
        assert validate_and_enforce_sql_safety(sql).modified_sql == sql

    def test_distinct_is_preserved(self):
        result = validate_and_enforce_sql_safety("select distinct lastName from Patient")
        assert result.modified_sql == "select distinct TOP 1000 lastName from rpt.Patient"

    def test_cte_caps_the_outer_select(self):
        result = validate_and_enforce_sql_safety(
            "WITH recent AS (SELECT id FROM Wound) SELECT * FROM recent"
        )
        assert result.modified_sql == (
            "WITH recent AS (SELECT id FROM rpt.Wound) SELECT TOP 1000 * FROM recent"
        )

    def test_top_in_subquery_does_not_cap_outer_query(self):
        result = validate_and_enforce_sql_safety(
            "SELECT * FROM Assessment WHERE patientFk IN (SELECT TOP 5 id FROM Patient)"
        )
        assert result.modified_sql == (
            "SELECT TOP 1000 * FROM rpt.Assessment WHERE patientFk IN (SELECT TOP 5 id FROM rpt.Patient)"
        )

    def test_limit_inside_cte_does_not_cap_outer_query(self):
        result = validate_and_enforce_sql_safety(
            "WITH r AS (SELECT id FROM Wound ORDER BY id OFFSET 0 ROWS) SELECT * FROM r"
        )
        assert result.modified_sql == (
            "WITH r AS (SELECT id FROM rpt.Wound ORDER BY id OFFSET 0 ROWS) SELECT TOP 1000 * FROM r"
        )

        result = validate_and_enforce_sql_safety(
            "WITH recent AS (SELECT TOP 5 id FROM Wound ORDER BY id DESC) SELECT * FROM recent"
        )
        assert result.modified_sql == (
            "WITH recent AS (SELECT TOP 5 id FROM rpt.Wound ORDER BY id DESC) SELECT TOP 1000 * FROM recent"
        )

    def test_union_is_capped_as_a_whole(self):
        result = validate_and_enforce_sql_safety(
            "SELECT id FROM Assessment UNION ALL SELECT id FROM Wound"
        )

        assert result.modified_sql == (
            "SELECT TOP 1000 * FROM (SELECT id FROM rpt.Assessment UNION ALL "
            "SELECT id FROM rpt.Wound) AS capped"
        )
        assert "Added TOP 1000 clause for safety" in result.warnings

    def test_union_keeps_trailing_order_by_outside_the_cap(self):
        result = validate_and_enforce_sql_safety(
            "SELECT TOP 10 id FROM Patient UNION SELECT id FROM Wound ORDER BY id;"
        )
        assert result.modified_sql == (
            "SELECT TOP 1000 * FROM (SELECT TOP 10 id FROM rpt.Patient UNION "
            "SELECT id FROM rpt.Wound) AS capped ORDER BY id;"
        )

    def test_union_with_outer_offset_is_left_alone(self):
        sql = (
            "SELECT id FROM rpt.Patient UNION SELECT id FROM rpt.Wound "
            "ORDER BY id OFFSET 0 ROWS FETCH NEXT 5 ROWS ONLY"
        )
        assert validate_and_enforce_sql_safety(sql).modified_sql == sql

    def test_comma_separated_tables_are_prefixed(self):
        result = validate_and_enforce_sql_safety("SELECT * FROM Patient P, Wound W")
        assert result.modified_sql == "SELECT TOP 1000 * FROM rpt.Patient P, rpt.Wound W"

    def test_joined_tables_are_prefixed(self):
        result = validate_and_enforce_sql_safety(
            "SELECT TOP 5 p.id FROM Patient p JOIN Wound w ON w.patientFk = p.id"
        )
        assert result.modified_sql == (
            "SELECT TOP 5 p.id FROM rpt.Patient p JOIN rpt.Wound w ON w.patientFk = p.id"
        )

    def test_wide_select_is_advisory_only(self):
        columns = ", ".join(f"c{i}" for i in range(21))
        result = validate_and_enforce_sql_safety(f"SELECT TOP 5 {columns} FROM rpt.Patient")

        assert result.is_valid
        assert result.warnings == ["Large number of columns (21) may impact performance"]

    @pytest.mark.parametrize("sql", ["", "   ", "EXPLAIN SELECT 1", "UPDATE rpt.Patient SET a = 1"])
    def test_non_select_statements_are_invalid(self, sql):
        assert not validate_and_enforce_sql_safety(sql).is_valid


class TestRules:
    def test_rule_order(self):
        assert SqlSafetyEnforcer().rule_names == [
            "statement_type",
            "dangerous_keywords",
            "row_cap",
            "schema_prefix",
            "column_count",
        ]

    def test_statement_type_halts(self):
        ctx = SafetyContext(sql="  with x as (select 1 a) select a from x")
        StatementTypeRule().apply(ctx)
        assert ctx.is_valid and not ctx.halted

        ctx = SafetyContext(sql="MERGE INTO t")
        StatementTypeRule().apply(ctx)
        assert ctx.halted and not ctx.is_valid

    def test_dangerous_keywords_are_whole_word(self):
        ctx = SafetyContext(sql="SELECT updatedAt, insertedBy, dropRate FROM t")
        DangerousKeywordRule().apply(ctx)
        assert ctx.is_valid

        ctx = SafetyContext(sql="SELECT 1; TRUNCATE TABLE t")
        DangerousKeywordRule().apply(ctx)
        assert not ctx.is_valid

    def test_row_cap_uses_configured_limit(self):
        ctx = SafetyContext(sql="SELECT a FROM t")
        RowCapRule(50).apply(ctx)
        assert ctx.sql == "SELECT TOP 50 a FROM t"

    def test_schema_prefix_skips_qualified_and_non_sensitive_tables(self):
        ctx = SafetyContext(sql="SELECT Patient FROM dbo.Patient JOIN Clinic c ON 1 = 1")
        SchemaPrefixRule().apply(ctx)
        assert ctx.sql == "SELECT Patient FROM dbo.Patient JOIN Clinic c ON 1 = 1"
        assert ctx.warnings == []

    def test_schema_prefix_handles_brackets(self):
        ctx = SafetyContext(sql="SELECT a FROM [Patient]")
        SchemaPrefixRule("dbo").apply(ctx)
        assert ctx.sql == "SELECT a FROM dbo.[Patient]"

    def test_schema_prefix_covers_every_from_list_entry(self):
        ctx = SafetyContext(sql="SELECT a, b FROM Clinic c, [Note] n, dbo.Wound w, Patient WHERE x IN (1, 2)")
        SchemaPrefixRule().apply(ctx)
        assert ctx.sql == "SELECT a, b FROM Clinic c, rpt.[Note] n, dbo.Wound w, rpt.Patient WHERE x IN (1, 2)"

    def test_schema_prefix_covers_from_lists_in_subqueries(self):
        ctx = SafetyContext(
            sql="SELECT * FROM Assessment a WHERE EXISTS (SELECT 1 FROM Note n, Wound w WHERE n.id = w.id)"
        )
        SchemaPrefixRule().apply(ctx)
        assert ctx.sql == (
            "SELECT * FROM rpt.Assessment a WHERE EXISTS "
            "(SELECT 1 FROM rpt.Note n, rpt.Wound w WHERE n.id = w.id)"
        )

    def test_schema_prefix_ignores_order_by_commas(self):
        ctx = SafetyContext(sql="SELECT a FROM Patient ORDER BY a, Wound")
        SchemaPrefixRule().apply(ctx)
        assert ctx.sql == "SELECT a FROM rpt.Patient ORDER BY a, Wound"

    def test_column_count_ignores_commas_in_function_calls(self):
        ctx = SafetyContext(sql="SELECT COALESCE(a, b, c), d FROM t")
        ColumnCountRule(max_columns=1).apply(ctx)
        assert ctx.warnings == ["Large number of columns (2) may impact performance"]

    def test_custom_rule_chain(self):
        enforcer = SqlSafetyEnforcer(default_rules(row_cap=25, schema="dbo"))
        result = enforcer.validate("SELECT * FROM Wound")
        assert result.modified_sql == "SELECT TOP 25 * FROM dbo.Wound"


class TestSqlText:
    def test_mask_preserves_length(self):
        sql = "SELECT 'a,b' AS x /* DROP */ FROM t"
        masked = mask_sql(sql)
        assert len(masked) == len(sql)
        assert "DROP" not in masked
        assert "a,b" not in masked

    def test_split_top_level(self):
        assert split_top_level("a, COUNT(b, c), d") == ["a", "COUNT(b, c)", "d"]


class TestValidateDesiredFields:
    def test_mixed_tokens(self):
        resolution = validate_desired_fields(["patient.firstName", "invalid.x", "wound.label"])

        assert resolution.fields_applied == ["patient.firstName", "wound.label"]
        assert resolution.rejected_fields == ["invalid.x"]
        assert resolution.join_summary.splitlines() == [
            "INNER JOIN rpt.Patient AS P ON base.patientFk = P.id",
            "INNER JOIN rpt.Wound AS W ON base.woundFk = W.id",
        ]
        assert resolution.select_columns == [
            "P.firstName AS patient_firstName",
            "W.label AS wound_label",
        ]

    def test_one_join_per_entity(self):
        resolution = validate_desired_fields(["patient.firstName", "patient.lastName"])
        assert len(resolution.join_summary.splitlines()) == 1
        assert len(resolution.fields_applied) == 2

    def test_repeated_field_is_applied_once(self):
        resolution = validate_desired_fields(["patient.firstName", "patient.firstName", "wound.label"])

        assert resolution.fields_applied == ["patient.firstName", "wound.label"]
        assert resolution.select_columns == [
            "P.firstName AS patient_firstName",
            "W.label AS wound_label",
        ]
        assert resolution.rejected_fields == []

    @pytest.mark.parametrize("token", ["patient", "patient.", ".firstName", "patient.first.name", "patient.ssn"])
    def test_malformed_or_unknown_tokens_are_rejected(self, token):
        resolution = validate_desired_fields([token])
        assert resolution.fields_applied == []
        assert resolution.rejected_fields == [token]
        assert resolution.join_summary == ""

    def test_nothing_requested(self):
        assert validate_desired_fields(None).fields_applied == []
        assert validate_desired_fields([]).rejected_fields == []


class TestValidateEnrichmentFields:
    SQL = (
        "SELECT base.*, P.firstName AS patient_firstName, W.label AS wound_label, "
        "base.id AS assessmentId FROM base"
    )

    def test_unrequested_underscore_alias_is_flagged(self):
        result = validate_enrichment_fields(self.SQL, ["patient.firstName"])

        assert not result.is_valid
        assert result.extra_fields == ["wound_label"]
        assert "wound_label" in result.warnings[0]

    def test_all_requested(self):
        result = validate_enrichment_fields(self.SQL, ["patient.firstName", "wound.label"])
        assert result.is_valid
        assert result.extra_fields == []

    def test_no_requested_fields_skips_check(self):
        assert validate_enrichment_fields(self.SQL, None).is_valid
