from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy import select

from app.exceptions import NotFoundError, PrinterError, RenderError, ValidationError
from app.models import ChangelogAction, LabelPrintLog, OrderChangelog, OrderItem, PrintMethod
from app.services import label_service
from app.services.label_printer import MockPrinter
from app.services.label_service import (
    list_print_log,
    preview_batch,
    preview_box,
    print_batch,
    print_box,
    resolve_preview,
    shipping_company_for,
)
from app.services.label_template import DEFAULT_TEMPLATE, LabelTemplate, sanitize
from tests.support import DatabaseTestCase


class LabelTemplateTests(unittest.TestCase):
    def test_default_template_is_valid(self) -> None:
        template = LabelTemplate.parse(DEFAULT_TEMPLATE)
        self.assertIn('box_number', template.variables)
        self.assertIn('order_number', template.variables)

    def test_unknown_variable_is_rejected_on_load(self) -> None:
        with self.assertRaises(RenderError):
            LabelTemplate.parse('T 10,10,0,3,pt12:"{customer_nickname}"\n')

    def test_unknown_directive_is_rejected_on_load(self) -> None:
        with self.assertRaises(RenderError):
            LabelTemplate.parse('J\nPRINT {order_number}\n')

    def test_malformed_placeholder_is_rejected_on_load(self) -> None:
        with self.assertRaises(RenderError):
            LabelTemplate.parse('T 10,10,0,3,pt12:"{Order Number}"\n')

    def test_missing_value_fails_closed(self) -> None:
        template = LabelTemplate.parse('T 10,10,0,3,pt12:"{customer_name}"\nT 10,40,0,3,pt12:"{order_number}"\n')
        with self.assertRaises(RenderError) as ctx:
            template.render({'customer_name': 'Acme'}, box_number=2)
        self.assertEqual(ctx.exception.box_number, 2)
        self.assertIn('order_number', str(ctx.exception))

    def test_substitution_is_single_pass(self) -> None:
        template = LabelTemplate.parse('T 10,10,0,3,pt12:"{customer_name} {order_number}"\n')
        rendered = template.render({'customer_name': '{order_number}', 'order_number': 'ORD-000001'})
        self.assertEqual(rendered, 'T 10,10,0,3,pt12:"{order_number} ORD-000001"\n')

    def test_values_cannot_break_out_of_their_line(self) -> None:
        self.assertEqual(sanitize('Acme "Deli"\nA 99'), "Acme 'Deli' A 99")

    def test_shipping_company_falls_back_in_order(self) -> None:
        order = SimpleNamespace(area='North')
        customer = SimpleNamespace(shipping_company=None, preferred_shipping_company=' ', billing_company='Billing Co')
        self.assertEqual(shipping_company_for(order, customer), 'Billing Co')
        self.assertEqual(shipping_company_for(order, None), 'North')


class LabelServiceTests(DatabaseTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.order = self.make_order(10, 5)
        self.printer = MockPrinter()

    def test_preview_is_deterministic(self) -> None:
        first = preview_box(self.db, order_id=self.order.id, box_number=2, box_count=3)
        second = preview_box(self.db, order_id=self.order.id, box_number=2, box_count=3)

        self.assertEqual(first.content, second.content)
        self.assertEqual(first.handle, second.handle)
        self.assertIn('BOX 2 OF 3', first.content)
        self.assertIn(f'CODE128,60,0.5;{self.order.order_number}', first.content)
        self.assertIn('Coastal Freight', first.content)
        self.assertEqual(first.preview_url, f'/preview-label/{self.order.id}/2/3?handle={first.handle}')

    def test_preview_batch_numbers_boxes_contiguously(self) -> None:
        previews = preview_batch(self.db, order_id=self.order.id, box_count=4)
        self.assertEqual([preview.box_number for preview in previews], [1, 2, 3, 4])
        self.assertEqual(len({preview.handle for preview in previews}), 4)
        for preview in previews:
            self.assertIn(f'BOX {preview.box_number} OF 4', preview.content)

    def test_box_range_is_checked_before_rendering(self) -> None:
        with patch('app.services.label_service.render_box') as render_mock:
            with self.assertRaises(ValidationError):
                preview_batch(self.db, order_id=self.order.id, box_count=0)
            with self.assertRaises(ValidationError):
                preview_box(self.db, order_id=self.order.id, box_number=4, box_count=3)
            with self.assertRaises(ValidationError):
                print_batch(
                    self.db, order_id=self.order.id, box_count=0, method=PrintMethod.DIRECT, actor_id=None
                )
        render_mock.assert_not_called()

    def test_resolve_preview_rejects_stale_handle(self) -> None:
        preview = preview_box(self.db, order_id=self.order.id, box_number=1, box_count=2)
        resolved = resolve_preview(
            self.db, order_id=self.order.id, box_number=1, box_count=2, handle=preview.handle
        )
        self.assertEqual(resolved.content, preview.content)
        with self.assertRaises(NotFoundError):
            resolve_preview(self.db, order_id=self.order.id, box_number=1, box_count=2, handle='stale')

    def test_print_box_logs_without_touching_quantities(self) -> None:
        entry = print_box(
            self.db,
            order_id=self.order.id,
            box_number=1,
            box_count=2,
            method=PrintMethod.DIRECT,
            actor_id=self.warehouse.id,
            printer=self.printer,
        )
        self.db.commit()

        self.assertEqual(entry.box_number, 1)
        self.assertEqual(len(self.printer.jobs), 1)
        self.assertIn('BOX 1 OF 2', self.printer.jobs[0].content)
        shipped = self.db.execute(
            select(OrderItem.shipped_quantity).where(OrderItem.order_id == self.order.id)
        ).scalars().all()
        self.assertEqual(shipped, [0, 0])

        log = list_print_log(self.db, order_id=self.order.id)
        self.assertEqual([(row['box_number'], row['method']) for row in log], [(1, 'direct')])
        actions = self.db.execute(
            select(OrderChangelog.action).where(OrderChangelog.order_id == self.order.id)
        ).scalars().all()
        self.assertIn(ChangelogAction.LABEL_PRINTED, actions)

    def test_browser_print_skips_the_printer(self) -> None:
        print_box(
            self.db,
            order_id=self.order.id,
            box_number=1,
            box_count=1,
            method=PrintMethod.BROWSER,
            actor_id=self.warehouse.id,
            printer=self.printer,
        )
        self.assertEqual(self.printer.jobs, [])
        self.assertEqual(list_print_log(self.db, order_id=self.order.id)[0]['method'], 'browser')

    def test_pending_orders_cannot_print(self) -> None:
        pending = self.make_order(1, picked=False)
        with self.assertRaises(ValidationError):
            print_box(
                self.db,
                order_id=pending.id,
                box_number=1,
                box_count=1,
                method=PrintMethod.DIRECT,
                actor_id=None,
                printer=self.printer,
            )

    def test_batch_reports_failed_boxes_and_keeps_printed_ones(self) -> None:
        real_render = label_service.render_box

        def _fail_box_two(template, variables, *, box_number):
            if box_number == 2:
                raise RenderError('Template variable missing', box_number=box_number)
            return real_render(template, variables, box_number=box_number)

        with patch('app.services.label_service.render_box', side_effect=_fail_box_two):
            result = print_batch(
                self.db,
                order_id=self.order.id,
                box_count=3,
                method=PrintMethod.DIRECT,
                actor_id=self.warehouse.id,
                printer=self.printer,
            )
        self.db.commit()

        self.assertFalse(result.success)
        self.assertEqual(result.printed, [1, 3])
        self.assertEqual([failure.box_number for failure in result.failed], [2])
        self.assertEqual([job.box_number for job in self.printer.jobs], [1, 3])
        logged = self.db.execute(
            select(LabelPrintLog.box_number).where(LabelPrintLog.order_id == self.order.id).order_by(LabelPrintLog.id)
        ).scalars().all()
        self.assertEqual(logged, [1, 3])

    def test_printer_failure_is_reported_per_box(self) -> None:
        self.printer.fail_boxes = {1}
        result = print_batch(
            self.db,
            order_id=self.order.id,
            box_count=2,
            method=PrintMethod.DIRECT,
            actor_id=self.warehouse.id,
            printer=self.printer,
        )
        self.assertEqual(result.printed, [2])
        self.assertEqual(result.failed[0].box_number, 1)
        self.assertIn('refused', result.failed[0].error)

    def test_printer_error_propagates_for_single_box(self) -> None:
        self.printer.fail_boxes = {1}
        with self.assertRaises(PrinterError):
            print_box(
                self.db,
                order_id=self.order.id,
                box_number=1,
                box_count=1,
                method=PrintMethod.DIRECT,
                actor_id=None,
                printer=self.printer,
            )
        self.assertEqual(list_print_log(self.db, order_id=self.order.id), [])

    def test_audit_failure_stops_the_label_before_printing(self) -> None:
        with patch(
            'app.services.label_service.log_order_change',
            side_effect=RuntimeError('database unavailable'),
        ):
            with self.assertRaises(RuntimeError):
                print_batch(
                    self.db,
                    order_id=self.order.id,
                    box_count=2,
                    method=PrintMethod.DIRECT,
                    actor_id=self.warehouse.id,
                    printer=self.printer,
                )
        self.assertEqual(self.printer.jobs, [])
        self.assertEqual(list_print_log(self.db, order_id=self.order.id), [])


if __name__ == '__main__':
    unittest.main()
