from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from ebm_sync.services.ebm_format_service import (
    actor_id,
    actor_name,
    branch_code_from_name,
    classify_item_type,
    format_ebm_date,
    format_ebm_timestamp,
    format_tin,
    generate_reference,
    parse_ebm_timestamp,
    resolve_branch_code,
    to_authority_time,
)


class FormatTinTests(unittest.TestCase):
    def test_full_length_numeric_tin_is_unchanged(self) -> None:
        self.assertEqual(format_tin('123456789'), '123456789')

    def test_short_numeric_tin_is_zero_padded(self) -> None:
        self.assertEqual(format_tin('123'), '000000123')

    def test_input_is_trimmed_before_padding(self) -> None:
        self.assertEqual(format_tin('  4567 '), '000004567')

    def test_non_numeric_tin_passes_through(self) -> None:
        self.assertEqual(format_tin('RW-XYZ'), 'RW-XYZ')

    def test_missing_tin_becomes_empty_string(self) -> None:
        self.assertEqual(format_tin(None), '')


class BranchCodeTests(unittest.TestCase):
    def test_first_standalone_two_digit_token_wins(self) -> None:
        self.assertEqual(branch_code_from_name('Kigali 07 Main'), '07')
        self.assertEqual(branch_code_from_name('Musanze 12 / 14'), '12')

    def test_names_without_a_code_fall_back_to_head_office(self) -> None:
        self.assertEqual(branch_code_from_name('Main branch'), '00')
        self.assertEqual(branch_code_from_name('Store 123'), '00')
        self.assertEqual(branch_code_from_name(None), '00')

    def test_no_branch_id_skips_lookup(self) -> None:
        db = MagicMock()
        self.assertEqual(resolve_branch_code(db, None), '00')
        db.execute.assert_not_called()

    def test_unknown_branch_falls_back_to_head_office(self) -> None:
        db = MagicMock()
        db.execute.return_value.scalar_one_or_none.return_value = None
        self.assertEqual(resolve_branch_code(db, 'missing'), '00')

    def test_known_branch_uses_its_name(self) -> None:
        db = MagicMock()
        db.execute.return_value.scalar_one_or_none.return_value = SimpleNamespace(name='Kigali 07')
        self.assertEqual(resolve_branch_code(db, 'branch-1'), '07')


class ReferenceAndClassificationTests(unittest.TestCase):
    def test_reference_uses_last_eight_hex_digits(self) -> None:
        self.assertEqual(generate_reference('550e8400-e29b-41d4-a716-446655440000'), 0x55440000)

    def test_reference_is_deterministic(self) -> None:
        entity_id = '9b2f0c1e-7d34-4f6a-a1b2-c3d4e5f60718'
        self.assertEqual(generate_reference(entity_id), generate_reference(entity_id))

    def test_reference_of_short_or_non_hex_ids(self) -> None:
        self.assertEqual(generate_reference('abc'), 0xABC)
        self.assertEqual(generate_reference('xyz-!'), 0)
        self.assertEqual(generate_reference(''), 0)

    def test_service_keywords_mark_item_as_service(self) -> None:
        self.assertEqual(classify_item_type('Consultation Fee'), '2')
        self.assertEqual(classify_item_type('Home VISIT'), '2')

    def test_other_names_are_goods(self) -> None:
        self.assertEqual(classify_item_type('Paracetamol 500mg'), '1')
        self.assertEqual(classify_item_type(None), '1')


class DateFormatTests(unittest.TestCase):
    def test_compact_formats(self) -> None:
        self.assertEqual(format_ebm_date(date(2026, 3, 1)), '20260301')
        self.assertEqual(format_ebm_timestamp(datetime(2026, 3, 1, 9, 5, 7)), '20260301090507')

    def test_aware_values_are_shifted_to_authority_time(self) -> None:
        late_utc = datetime(2026, 3, 1, 22, 30, 0, tzinfo=timezone.utc)

        self.assertEqual(format_ebm_timestamp(late_utc), '20260302003000')
        self.assertEqual(format_ebm_date(late_utc), '20260302')
        self.assertEqual(to_authority_time(late_utc), datetime(2026, 3, 2, 0, 30, 0))

    def test_offset_follows_settings(self) -> None:
        with patch('ebm_sync.services.ebm_format_service.settings', SimpleNamespace(ebm_utc_offset_hours=0)):
            self.assertEqual(format_ebm_timestamp(datetime(2026, 3, 1, 22, 30, 0, tzinfo=timezone.utc)), '20260301223000')

    def test_parse_timestamp(self) -> None:
        self.assertEqual(parse_ebm_timestamp('20260105093000'), datetime(2026, 1, 5, 9, 30, 0))
        self.assertEqual(parse_ebm_timestamp(20260105093000), datetime(2026, 1, 5, 9, 30, 0))

    def test_parse_rejects_malformed_values(self) -> None:
        for value in ('2026010509', '2026-01-05 09:30', '20261305093000'):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    parse_ebm_timestamp(value)


class ActorTests(unittest.TestCase):
    def test_name_is_trimmed_and_id_prefers_email(self) -> None:
        user = SimpleNamespace(id='u-1', first_name='Aline', last_name='', email='aline@example.com')
        self.assertEqual(actor_name(user), 'Aline')
        self.assertEqual(actor_id(user), 'aline@example.com')

    def test_id_falls_back_to_user_id(self) -> None:
        user = SimpleNamespace(id='u-2', first_name='Jean', last_name='Bosco', email=None)
        self.assertEqual(actor_name(user), 'Jean Bosco')
        self.assertEqual(actor_id(user), 'u-2')


if __name__ == '__main__':
    unittest.main()
