from gym_app.migration.pipeline.extractor import InsertBlock, extract_insert_blocks
from gym_app.migration.pipeline.reconciliation import (
    ReconciliationEntry,
    build_reconciliation_maps,
    is_successful_status,
)

COLUMNS = ("user_id", "email", "phone", "status", "expiry_date", "package_id")


def _block(*rows, columns=COLUMNS):
    return InsertBlock(table="payments", columns=columns, rows=tuple(tuple(row) for row in rows))


def test_later_expiry_wins_regardless_of_row_order():
    older = ("u1", "a@example.com", None, "completed", "2024-01-01", "Silver")
    newer = ("u1", "a@example.com", None, "completed", "2025-06-30", "Gold")

    forward = build_reconciliation_maps([_block(older, newer)])
    backward = build_reconciliation_maps([_block(newer, older)])

    expected = ReconciliationEntry(package_ref="Gold", expiry="2025-06-30", gender=None)
    assert forward.by_id["u1"] == expected
    assert backward.by_id["u1"] == expected
    assert forward.by_email == backward.by_email == {"a@example.com": expected}


def test_equal_expiry_tie_is_order_independent():
    first = ("u1", None, None, "paid", "2025-01-01", "Alpha")
    second = ("u1", None, None, "paid", "2025-01-01", "Beta")

    assert (
        build_reconciliation_maps([_block(first, second)]).by_id
        == build_reconciliation_maps([_block(second, first)]).by_id
    )


def test_unsuccessful_statuses_are_ignored():
    maps = build_reconciliation_maps(
        [
            _block(
                ("u1", None, None, "FAILED", "2030-01-01", "Gold"),
                ("u2", None, None, None, "2030-01-01", "Gold"),
                ("u3", None, None, "Payment Completed", "2030-01-01", "Gold"),
            )
        ]
    )

    assert set(maps.by_id) == {"u3"}
    assert maps.payment_rows == 3
    assert maps.qualifying_rows == 1
    assert maps.skipped_payments == 0


def test_rows_without_identifiers_are_skipped_with_warning():
    maps = build_reconciliation_maps([_block((None, None, None, "completed", "2030-01-01", "Gold"))])

    assert maps.skipped_payments == 1
    assert maps.warnings[0].startswith("Payment row missing identifiers (user/email/phone). Raw: ")
    assert maps.sizes() == {"by_id": 0, "by_email": 0, "by_phone": 0}


def test_email_falls_back_to_any_value_with_at_sign():
    block = _block(("u9", "Someone@Example.com", "paid", "Gold"), columns=("user_id", "contact", "status", "plan"))

    maps = build_reconciliation_maps([block])

    assert "someone@example.com" in maps.by_email


def test_phone_and_embedded_payload():
    block = _block(
        (None, None, "+1 555 0100", "completed", None, None, "{''package'':''Gold'',''expiryDate'':''2031-01-01''}"),
        columns=COLUMNS + ("qr_code_data",),
    )

    maps = build_reconciliation_maps([block])

    assert maps.by_phone["+15550100"] == ReconciliationEntry(package_ref="Gold", expiry="2031-01-01", gender=None)


def test_candidates_follow_id_email_phone_priority():
    maps = build_reconciliation_maps(
        [
            _block(
                ("u1", None, None, "paid", "2030-01-01", "ById"),
                (None, "b@example.com", None, "paid", "2030-01-01", "ByEmail"),
                (None, None, "555", "paid", "2030-01-01", "ByPhone"),
            )
        ]
    )

    found = maps.candidates(member_id="u1", email="B@example.com", phone="5-5-5")

    assert [name for name, _ in found] == ["by_id", "by_email", "by_phone"]
    assert [entry.package_ref for _, entry in found] == ["ById", "ByEmail", "ByPhone"]


def test_success_status_vocabulary():
    vocabulary = ("completed", "paid")

    assert is_successful_status("PAID", vocabulary)
    assert not is_successful_status("pending", vocabulary)
    assert not is_successful_status(None, vocabulary)


def test_maps_from_extracted_dump(members_dump):
    blocks = extract_insert_blocks(members_dump, "payments")

    maps = build_reconciliation_maps(blocks)

    assert maps.payment_rows == 4
    assert maps.qualifying_rows == 2
    assert maps.skipped_payments == 1
    assert maps.by_id["10"].package_ref == "Gold"
    assert maps.by_id["10"].expiry == "2030-01-31"
