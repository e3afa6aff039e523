"""Shopify Admin API access."""

from feedsync.shopify.client import ShopifyAdminClient, ShopifyError, VariantCreateOutcome

__all__ = ["ShopifyAdminClient", "ShopifyError", "VariantCreateOutcome"]
