from __future__ import annotations

import unittest

from sales_agent.catalog import (
    item_matches,
    location_id_for_name,
    location_name,
    resolve_items,
    resolve_locations,
)

from .fixtures import BLOOR, HQ, KINGSTON


class EntityResolverTests(unittest.TestCase):
    def test_pair_of_locations_is_resolved(self) -> None:
        self.assertEqual(resolve_locations("Compare Bloor vs Kingston revenue last month"), [BLOOR, KINGSTON])

    def test_aliases_are_word_bounded(self) -> None:
        self.assertEqual(resolve_locations("wellness drinks at the main office"), [HQ])
        self.assertEqual(resolve_locations("how is The Well doing"), ["LT8YK4FBNGH17"])

    def test_store_prefix_does_not_match_every_location(self) -> None:
        self.assertEqual(resolve_locations("De Mello Coffee - Bloor"), [BLOOR])

    def test_no_match_is_empty(self) -> None:
        self.assertEqual(resolve_locations("total sales yesterday"), [])
        self.assertEqual(resolve_items(""), [])

    def test_items_resolve_through_aliases(self) -> None:
        self.assertEqual(resolve_items("one americano and a chai"), ["coffee", "tea"])
        self.assertEqual(resolve_items("espresso vs latte"), ["coffee", "latte"])

    def test_location_name_lookup(self) -> None:
        self.assertEqual(location_id_for_name("Kingston"), KINGSTON)
        self.assertEqual(location_id_for_name("De Mello Coffee - Bloor"), BLOOR)
        self.assertEqual(location_id_for_name("headquarters"), HQ)
        self.assertIsNone(location_id_for_name("Mars"))
        self.assertEqual(location_name(BLOOR), "Bloor")
        self.assertEqual(location_name("unknown"), "unknown")

    def test_item_matching_against_sold_names(self) -> None:
        self.assertTrue(item_matches("tea", "Chai Tea"))
        self.assertFalse(item_matches("latte", "Coffee"))
        self.assertTrue(item_matches("Croissant", "Butter Croissant"))


if __name__ == "__main__":
    unittest.main()
