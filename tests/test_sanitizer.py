import pytest

from order_insights.core.analytics.sanitizer import require_safe_sql, sanitize_sql
from order_insights.core.analytics.store import scope_query_to_tenant
from order_insights.core.errors import SanitizationRejected


def test_plain_select_gets_limit():
    result = sanitize_sql("SELECT status, COUNT(*) FROM orders GROUP BY status;")

    assert result.valid
    assert result.query == "SELECT status, COUNT(*) FROM orders GROUP BY status LIMIT 1000"


def test_existing_limit_is_kept():
    result = sanitize_sql("select * from orders limit 5")

    assert result.valid
    assert result.query == "select * from orders limit 5"


@pytest.mark.parametrize(
    "sql",
    [
        "DELETE FROM orders",
        "WITH x AS (SELECT 1) SELECT * FROM x",
        "  update orders set status = 'paid'",
        "",
    ],
)
def test_only_select_is_allowed(sql):
    result = sanitize_sql(sql)

    assert not result.valid
    assert result.error == "Only SELECT queries are allowed"


@pytest.mark.parametrize(
    "sql, keyword",
    [
        ("SELECT * FROM orders; DROP TABLE orders", "DROP"),
        ("SELECT * INTO backup FROM orders", "INTO"),
        ("SELECT * FROM orders; DELETE FROM orders", "DELETE"),
    ],
)
def test_write_keywords_are_blocked(sql, keyword):
    result = sanitize_sql(sql)

    assert not result.valid
    assert result.error == f'Operation "{keyword}" is not allowed'


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT * FROM orders -- comment",
        "SELECT * FROM orders /* hidden */",
        "SELECT status FROM orders UNION SELECT 1",
        "SELECT status FROM orders UNION ALL SELECT 1",
        "SELECT xp_cmdshell FROM orders",
        "SELECT * FROM orders; SELECT 1",
    ],
)
def test_dangerous_patterns_are_blocked(sql):
    result = sanitize_sql(sql)

    assert not result.valid
    assert result.error == "Potentially dangerous SQL pattern detected"


def test_other_tables_are_not_accessible():
    result = sanitize_sql("SELECT * FROM users")

    assert not result.valid
    assert result.error == 'Table "users" is not accessible'


def test_joined_tables_are_checked():
    result = sanitize_sql("SELECT * FROM orders o JOIN customers c ON c.id = o.id")

    assert not result.valid
    assert result.error == 'Table "customers" is not accessible'


def test_comma_separated_tables_are_checked():
    result = sanitize_sql("SELECT * FROM orders o, tenants t")

    assert not result.valid
    assert result.error == 'Table "tenants" is not accessible'


def test_subqueries_and_function_arguments_are_allowed():
    sql = (
        "SELECT m, COUNT(*) FROM (SELECT EXTRACT(MONTH FROM order_date) AS m FROM orders) sub "
        "GROUP BY m"
    )

    assert sanitize_sql(sql).valid


def test_parenthesized_non_select_source_is_rejected():
    result = sanitize_sql("SELECT * FROM (VALUES (1))")

    assert not result.valid


def test_table_words_inside_quoted_text_are_rejected():
    result = sanitize_sql("SELECT * FROM orders WHERE marketplace = 'from users'")

    assert not result.valid
    assert result.error == "FROM / JOIN inside quoted text is not allowed"


def test_apostrophe_in_quoted_identifier_does_not_hide_tables():
    result = sanitize_sql("SELECT 1 AS \"x'\", name FROM users WHERE id = '1'")

    assert not result.valid
    assert result.error == 'Table "users" is not accessible'


def test_escape_string_does_not_hide_tables():
    result = sanitize_sql("SELECT E'\\'' AS q, name FROM users WHERE id = '1'")

    assert not result.valid
    assert result.error == 'Table "users" is not accessible'


def test_quoted_identifier_with_apostrophe_is_still_scoped():
    scoped = scope_query_to_tenant("SELECT 1 AS \"x'\", status FROM orders WHERE status = 'paid' LIMIT 1000")

    assert "FROM tenant_orders AS orders WHERE status = 'paid'" in scoped


def test_select_without_table_gets_limit():
    result = sanitize_sql("SELECT 1")

    assert result.valid
    assert result.query == "SELECT 1 LIMIT 1000"


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT 1",
        "SELECT status, COUNT(*) FROM orders GROUP BY status;",
        "select o.marketplace from orders o where o.status = 'paid'",
    ],
)
def test_sanitizing_twice_changes_nothing(sql):
    once = sanitize_sql(sql).query

    assert sanitize_sql(once).query == once


def test_require_safe_sql_raises_on_rejection():
    with pytest.raises(SanitizationRejected) as error:
        require_safe_sql("DROP TABLE orders")

    assert error.value.error_type == "sanitization"


def test_scope_aliases_unaliased_table():
    scoped = scope_query_to_tenant("SELECT status FROM orders WHERE orders.total_amount > 10 LIMIT 1000")

    assert scoped.startswith("WITH tenant_orders AS (SELECT * FROM orders WHERE tenant_id = :tenant_id) ")
    assert "FROM tenant_orders AS orders WHERE orders.total_amount > 10" in scoped


def test_scope_keeps_existing_alias():
    scoped = scope_query_to_tenant("SELECT o.status FROM orders o LIMIT 1000")

    assert "FROM tenant_orders o LIMIT 1000" in scoped
