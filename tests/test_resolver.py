"""
Tests for relationship resolution.

Covers default naming, override rules, collision handling, determinism and
desired-graph construction.
"""

import itertools

import pytest

from tier_sync.config import NamingRule
from tier_sync.discovery import RelationshipResolver, build_desired_graph, pluralize, singularize
from tier_sync.errors import ConfigurationError
from tier_sync.models import IntrospectionResult, TableRef

from conftest import make_fk


def names(relationships):
    return sorted((r.table.qualified_name, r.name) for r in relationships)


class TestNaming:
    """Tests for pluralisation helpers."""

    @pytest.mark.parametrize("name,expected", [
        ("order", "orders"),
        ("orders", "orders"),
        ("company", "companies"),
        ("address", "addresses"),
        ("box", "boxes"),
        ("operator_contact", "operator_contacts"),
        ("day", "days"),
    ])
    def test_pluralize(self, name, expected):
        assert pluralize(name) == expected

    @pytest.mark.parametrize("name,expected", [
        ("orders", "order"),
        ("companies", "company"),
        ("addresses", "address"),
        ("admin_users", "admin_user"),
        ("status", "status"),
    ])
    def test_singularize(self, name, expected):
        assert singularize(name) == expected


class TestRelationshipResolver:
    """Tests for RelationshipResolver."""

    def test_round_trip_names(self):
        """orders.customer_id -> customers.id yields customer / orders."""
        resolver = RelationshipResolver(rules=[])
        result = resolver.resolve([make_fk("orders", "customer_id", "customers")])

        assert names(result.object_relationships) == [("public.orders", "customer")]
        assert names(result.array_relationships) == [("public.customers", "orders")]
        rel = result.object_relationships[0]
        assert rel.source_column == "customer_id"
        arr = result.array_relationships[0]
        assert arr.remote_table == TableRef("public", "orders")
        assert arr.remote_column == "customer_id"

    def test_cross_schema_array_is_prefixed(self):
        resolver = RelationshipResolver(rules=[])
        result = resolver.resolve([make_fk("sales.leads", "owner_id", "admin.admin_users")])

        assert names(result.array_relationships) == [("admin.admin_users", "sales_leads")]

    def test_company_override(self):
        resolver = RelationshipResolver()
        result = resolver.resolve([
            make_fk("operators.operator_contacts", "company_id", "operators.operator_companies"),
        ])
        assert names(result.object_relationships) == [("operators.operator_contacts", "operator_company")]

    def test_company_override_ignores_schema_name(self):
        resolver = RelationshipResolver()
        result = resolver.resolve([make_fk("companies_ops.tickets", "lead_id", "companies_ops.leads")])
        assert names(result.object_relationships) == [("companies_ops.tickets", "lead")]

    def test_qualified_rule_pattern(self):
        rule = NamingRule(target_table="crm.*", object_name="crm_{base}")
        resolver = RelationshipResolver(rules=[rule])
        result = resolver.resolve([
            make_fk("sales.leads", "contact_id", "crm.contacts"),
            make_fk("sales.leads", "owner_id", "admin.contacts"),
        ])
        assert names(result.object_relationships) == [
            ("sales.leads", "crm_contact"),
            ("sales.leads", "owner"),
        ]

    def test_audit_column_override(self):
        resolver = RelationshipResolver()
        result = resolver.resolve([
            make_fk("sales.leads", "created_by_id", "admin.admin_users"),
            make_fk("sales.leads", "reviewed_by_id", "admin.admin_users"),
        ])
        assert names(result.object_relationships) == [
            ("sales.leads", "created_by_user"),
            ("sales.leads", "reviewed_by_user"),
        ]

    def test_configured_rule_with_placeholders(self):
        rule = NamingRule(target_table="*invoices", object_name="billed_{base}", array_name="{source}_lines")
        resolver = RelationshipResolver(rules=[rule])
        result = resolver.resolve([make_fk("financial.invoice_lines", "invoice_id", "financial.billing_invoices")])

        assert names(result.object_relationships) == [("financial.invoice_lines", "billed_invoice")]
        assert names(result.array_relationships) == [("financial.billing_invoices", "invoice_lines_lines")]

    def test_invalid_template_raises(self):
        resolver = RelationshipResolver(rules=[NamingRule(object_name="{unknown}")])
        with pytest.raises(ConfigurationError):
            resolver.resolve([make_fk("orders", "customer_id", "customers")])

    def test_collision_disambiguation(self):
        """Two FKs from one table to another collide on the array side."""
        resolver = RelationshipResolver(rules=[])
        result = resolver.resolve([
            make_fk("transfers", "from_account_id", "accounts"),
            make_fk("transfers", "to_account_id", "accounts"),
        ])

        assert names(result.object_relationships) == [
            ("public.transfers", "from_account"),
            ("public.transfers", "to_account"),
        ]
        assert names(result.array_relationships) == [
            ("public.accounts", "transfers_by_from_account"),
            ("public.accounts", "transfers_by_to_account"),
        ]

    def test_override_collision_is_disambiguated(self):
        """Every FK to a company table gets the same override name."""
        resolver = RelationshipResolver()
        result = resolver.resolve([
            make_fk("operators.facilities", "company_id", "operators.operator_companies"),
            make_fk("operators.facilities", "parent_company_id", "operators.operator_companies"),
        ])
        assert names(result.object_relationships) == [
            ("operators.facilities", "operator_company_by_company"),
            ("operators.facilities", "operator_company_by_parent_company"),
        ]

    def test_residual_collision_uses_constraint_name(self):
        resolver = RelationshipResolver(rules=[NamingRule(object_name="owner")])
        result = resolver.resolve([
            make_fk("a", "x_id", "b", constraint="a_x_fk1"),
            make_fk("a", "x_id", "c", constraint="a_x_fk2"),
        ])
        assert names(result.object_relationships) == [
            ("public.a", "owner_by_x_a_x_fk1"),
            ("public.a", "owner_by_x_a_x_fk2"),
        ]

    def test_column_clash(self):
        """An FK column without _id would shadow itself."""
        resolver = RelationshipResolver(rules=[])
        orders = TableRef("public", "orders")
        result = resolver.resolve(
            [make_fk("orders", "status", "order_statuses", target_column="code")],
            columns={orders: ["id", "status"]},
        )
        assert names(result.object_relationships) == [("public.orders", "order_status_by_status")]

    def test_self_reference_keeps_kinds_apart(self):
        """items.items_id -> items would name both sides 'items'."""
        resolver = RelationshipResolver(rules=[])
        result = resolver.resolve([make_fk("items", "items_id", "items")])

        assert names(result.object_relationships) == [("public.items", "items")]
        assert names(result.array_relationships) == [("public.items", "items_by_items")]

    def test_array_name_avoids_column(self):
        resolver = RelationshipResolver(rules=[])
        customers = TableRef("public", "customers")
        result = resolver.resolve(
            [make_fk("orders", "customer_id", "customers")],
            columns={customers: ["id", "orders"]},
        )
        assert names(result.array_relationships) == [("public.customers", "orders_by_customer")]

    def test_array_name_avoids_object_name(self):
        """An array relationship may not reuse an object relationship name on the same table."""
        resolver = RelationshipResolver(rules=[])
        result = resolver.resolve([
            make_fk("customers", "orders_id", "order_batches"),
            make_fk("orders", "customer_id", "customers"),
        ])
        assert names(result.object_relationships) == [
            ("public.customers", "orders"),
            ("public.orders", "customer"),
        ]
        assert names(result.array_relationships) == [
            ("public.customers", "orders_by_customer"),
            ("public.order_batches", "customers"),
        ]

    def test_resolution_is_order_independent(self):
        fks = [
            make_fk("transfers", "from_account_id", "accounts"),
            make_fk("transfers", "to_account_id", "accounts"),
            make_fk("orders", "customer_id", "customers"),
            make_fk("sales.leads", "company_id", "operators.operator_companies"),
        ]
        resolver = RelationshipResolver()
        baseline = resolver.resolve(fks)

        for permutation in itertools.permutations(fks):
            result = resolver.resolve(list(permutation))
            assert result.object_relationships == baseline.object_relationships
            assert result.array_relationships == baseline.array_relationships

    def test_to_dict(self):
        result = RelationshipResolver(rules=[]).resolve([make_fk("orders", "customer_id", "customers")])
        data = result.to_dict()
        assert data["tables"]["public.orders"]["object"] == [{"name": "customer", "column": "customer_id"}]
        assert data["tables"]["public.customers"]["array"][0]["remote_table"] == "public.orders"


class TestBuildDesiredGraph:
    """Tests for desired graph construction."""

    def test_round_trip(self, round_trip_introspection):
        graph = build_desired_graph(round_trip_introspection, RelationshipResolver(rules=[]))

        assert graph.tables == {TableRef("public", "customers"), TableRef("public", "orders")}
        assert graph.relationship_count == 2
        assert {(r.table.name, r.name) for r in graph.object_relationships} == {("orders", "customer")}

    def test_drops_fks_to_unknown_tables(self):
        orders = TableRef("public", "orders")
        introspection = IntrospectionResult(
            tables=[orders],
            foreign_keys=[make_fk("orders", "customer_id", "customers")],
            columns={orders: ["id", "customer_id"]},
        )
        graph = build_desired_graph(introspection)

        assert graph.tables == {orders}
        assert graph.relationship_count == 0
