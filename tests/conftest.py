"""Pytest configuration and fixtures."""

import pytest
from workspace_lineage import LineageEngine, LineageGraphBuilder
from workspace_lineage.core.config import EngineConfig


@pytest.fixture
def ecommerce_facts():
    """A small e-commerce workspace: products, orders, an analytics view and a sales report."""
    return {
        "schema/products.sql": {
            "tables": [
                {
                    "name": "products",
                    "line": 1,
                    "columns": [
                        {"name": "id", "data_type": "INT", "primary_key": True, "nullable": False, "line": 2},
                        {"name": "name", "data_type": "VARCHAR(100)", "line": 3},
                        {"name": "price", "data_type": "DECIMAL(10,2)", "line": 4},
                    ],
                }
            ]
        },
        "schema/orders.sql": {
            "tables": [
                {
                    "name": "orders",
                    "line": 1,
                    "columns": [
                        {"name": "id", "data_type": "INT", "primary_key": True, "nullable": False, "line": 2},
                        {"name": "customer_id", "data_type": "INT", "line": 3},
                        {"name": "order_date", "data_type": "DATE", "line": 4},
                    ],
                },
                {
                    "name": "order_items",
                    "line": 10,
                    "columns": [
                        {"name": "id", "data_type": "INT", "primary_key": True, "line": 11},
                        {"name": "order_id", "data_type": "INT", "line": 12},
                        {
                            "name": "product_id",
                            "data_type": "INT",
                            "line": 13,
                            "foreign_key": {"table": "products", "column": "id"},
                        },
                        {"name": "quantity", "data_type": "INT", "line": 14},
                        {"name": "unit_price", "data_type": "DECIMAL(10,2)", "line": 15},
                    ],
                },
            ]
        },
        "views/order_analytics.sql": {
            "views": [
                {"name": "order_analytics", "line": 1, "columns": ["order_id", "order_date", "revenue"]}
            ],
            "references": [
                {"kind": "view_source", "source": "orders", "target": "order_analytics", "line": 5},
                {
                    "kind": "join",
                    "source": "order_items",
                    "target": "orders",
                    "join_type": "INNER",
                    "columns": ["order_id"],
                    "line": 6,
                },
            ],
            "transformations": [
                {
                    "target_table": "order_analytics",
                    "target_column": "order_id",
                    "sources": [{"table": "orders", "column": "id"}],
                    "expression": "o.id",
                    "line": 2,
                },
                {
                    "target_table": "order_analytics",
                    "target_column": "order_date",
                    "sources": [{"table": "orders", "column": "order_date"}],
                    "expression": "o.order_date",
                    "line": 3,
                },
                {
                    "target_table": "order_analytics",
                    "target_column": "revenue",
                    "sources": [
                        {"table": "order_items", "column": "quantity"},
                        {"table": "order_items", "column": "unit_price"},
                    ],
                    "expression": "SUM(oi.quantity * oi.unit_price)",
                    "line": 4,
                },
            ],
        },
        "schema/raw_sales.sql": {
            "tables": [
                {"name": "raw_sales", "line": 1, "columns": ["id", "sale_date", "amount"]}
            ]
        },
        "reports/daily_sales.sql": {
            "views": [
                {"name": "daily_sales", "line": 1, "columns": ["sale_date", "total_revenue"]}
            ],
            "references": [
                {"kind": "select_source", "source": "raw_sales", "target": "daily_sales", "line": 4}
            ],
            "transformations": [
                {
                    "target_table": "daily_sales",
                    "target_column": "sale_date",
                    "sources": [{"table": "raw_sales", "column": "sale_date"}],
                    "expression": "sale_date",
                    "line": 2,
                },
                {
                    "target_table": "daily_sales",
                    "target_column": "total_revenue",
                    "sources": [{"table": "raw_sales", "column": "amount"}],
                    "expression": "SUM(amount) AS total_revenue",
                    "line": 3,
                },
            ],
        },
    }


@pytest.fixture
def cyclic_facts():
    """Two views that read from each other, fed by one base table."""
    return {
        "cycle.sql": {
            "tables": [{"name": "base", "line": 1, "columns": ["x"]}],
            "views": [
                {"name": "view_a", "line": 5, "columns": ["x"]},
                {"name": "view_b", "line": 10, "columns": ["x"]},
            ],
            "references": [
                {"kind": "select_source", "source": "base", "target": "view_a", "line": 6},
                {"kind": "view_source", "source": "view_a", "target": "view_b", "line": 11},
                {"kind": "view_source", "source": "view_b", "target": "view_a", "line": 7},
            ],
            "transformations": [
                {
                    "target_table": "view_a",
                    "target_column": "x",
                    "sources": [{"table": "view_b", "column": "x"}],
                    "kind": "direct",
                    "line": 7,
                },
                {
                    "target_table": "view_b",
                    "target_column": "x",
                    "sources": [{"table": "view_a", "column": "x"}],
                    "kind": "direct",
                    "line": 11,
                },
            ],
        }
    }


@pytest.fixture
def fan_in_facts():
    """A summary view whose columns combine several inputs."""
    return {
        "tables.sql": {
            "tables": [
                {"name": "customers", "line": 1, "columns": ["id", "first_name", "last_name", "status"]},
                {"name": "payments", "line": 8, "columns": ["customer_id", "amount", "discount"]},
            ]
        },
        "summary.sql": {
            "views": [
                {"name": "customer_summary", "line": 1, "columns": ["full_name", "net_amount", "score"]}
            ],
            "references": [
                {"kind": "select_source", "source": "customers", "target": "customer_summary", "line": 6},
                {
                    "kind": "join",
                    "source": "payments",
                    "target": "customer_summary",
                    "join_type": "LEFT",
                    "columns": ["customer_id"],
                    "line": 7,
                },
            ],
            "transformations": [
                {
                    "target_table": "customer_summary",
                    "target_column": "full_name",
                    "sources": [
                        {"table": "customers", "column": "first_name"},
                        {"table": "customers", "column": "last_name"},
                    ],
                    "expression": "first_name || ' ' || last_name",
                    "line": 2,
                },
                {
                    "target_table": "customer_summary",
                    "target_column": "net_amount",
                    "sources": [
                        {"table": "payments", "column": "amount"},
                        {"table": "payments", "column": "discount"},
                    ],
                    "kind": "arithmetic",
                    "expression": "amount - discount",
                    "line": 3,
                },
                {
                    "target_table": "customer_summary",
                    "target_column": "score",
                    "sources": [{"table": "customers", "column": "status"}],
                    "kind": "direct",
                    "line": 4,
                },
                {
                    "target_table": "customer_summary",
                    "target_column": "score",
                    "sources": [{"table": "payments", "column": "amount"}],
                    "kind": "aggregate",
                    "expression": "MAX(amount)",
                    "line": 5,
                },
            ],
        },
    }


@pytest.fixture
def builder():
    """Create a graph builder with default configuration."""
    return LineageGraphBuilder(EngineConfig())


@pytest.fixture
def ecommerce_graph(builder, ecommerce_facts):
    return builder.build(ecommerce_facts)


@pytest.fixture
def cyclic_graph(builder, cyclic_facts):
    return builder.build(cyclic_facts)


@pytest.fixture
def fan_in_graph(builder, fan_in_facts):
    return builder.build(fan_in_facts)


@pytest.fixture
def engine(ecommerce_facts):
    """Create an engine with the e-commerce workspace loaded."""
    engine = LineageEngine(EngineConfig())
    engine.rebuild(ecommerce_facts)
    return engine
