"""
Tests for the catalog, tenancy and order CRUD endpoints
"""
import unittest

from api_test_case import ApiTestCase
from models import (
    Zone, Publication, PublicationSubtitle, BookCatalog, StationeryItem,
    Customer, SchoolClass, Set, BranchAdmin, Language,
)


class CatalogTestCase(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.admin = self.make_super_admin()


class TestNamedLookups(CatalogTestCase):

    def test_zone_crud(self):
        res = self.post('/api/v1/zones', {'name': ' North '}, user=self.admin)
        self.assertEqual(res.status_code, 201)
        zone = res.get_json()['data']
        self.assertEqual(zone['name'], 'North')
        self.assertEqual(zone['status'], 'active')

        res = self.patch(f"/api/v1/zones/{zone['id']}", {'status': 'inactive'}, user=self.admin)
        self.assertEqual(res.get_json()['data']['status'], 'inactive')

        res = self.get('/api/v1/zones', user=self.admin)
        self.assertEqual(res.get_json()['results'], 1)

        res = self.delete(f"/api/v1/zones/{zone['id']}", user=self.admin)
        self.assertEqual(res.status_code, 204)
        self.assertEqual(self.get(f"/api/v1/zones/{zone['id']}", user=self.admin).status_code, 404)

    def test_name_required(self):
        res = self.post('/api/v1/classes', {}, user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()['error'], 'Class name is required')

    def test_patch_without_valid_fields(self):
        language = Language.create(name='Hindi')

        res = self.patch(f'/api/v1/languages/{language.id}', {'colour': 'red'}, user=self.admin)

        self.assertEqual(res.status_code, 400)

    def test_invalid_status(self):
        res = self.post('/api/v1/classes', {'name': 'Class 1', 'status': 'archived'}, user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertIn('not a valid status', res.get_json()['error'])

    def test_duplicate_name_hits_unique_index(self):
        self.post('/api/v1/zones', {'name': 'South'}, user=self.admin)

        res = self.post('/api/v1/zones', {'name': 'South'}, user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertTrue(res.get_json()['error'].startswith('Duplicate field value entered'))

    def test_classes_use_class_collection(self):
        self.post('/api/v1/classes', {'name': 'Class 5'}, user=self.admin)

        self.assertEqual(self.mongo['bookstore_test']['class'].count_documents({}), 1)

    def test_unknown_id_is_404(self):
        res = self.get('/api/v1/zones/999', user=self.admin)

        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json()['error'], 'No zone found with that ID')


class TestCities(CatalogTestCase):

    def test_city_embeds_zone(self):
        zone = Zone.create(name='West')

        res = self.post('/api/v1/cities', {'name': 'Ajmer', 'zone': str(zone.id)}, user=self.admin)

        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.get_json()['data']['zone'], {'id': zone.id, 'name': 'West'})
        listed = self.get('/api/v1/cities', user=self.admin).get_json()['data']
        self.assertEqual(listed[0]['zone']['name'], 'West')

    def test_city_requires_existing_zone(self):
        res = self.post('/api/v1/cities', {'name': 'Ajmer', 'zone': 77}, user=self.admin)

        self.assertEqual(res.status_code, 404)

    def test_city_requires_zone(self):
        res = self.post('/api/v1/cities', {'name': 'Ajmer'}, user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()['error'], 'City must belong to a Zone')


class TestPublications(CatalogTestCase):

    PAYLOAD = {
        'name': 'Rachna Sagar',
        'personName': 'A. Gupta',
        'city': 1,
        'mobileNumber': '9876543210',
        'address': 'Daryaganj',
        'discount': 12,
        'subtitles': ['Main Course', 'Workbook'],
    }

    def test_create_with_subtitles(self):
        res = self.post('/api/v1/publications', self.PAYLOAD, user=self.admin)

        self.assertEqual(res.status_code, 201)
        names = [s['name'] for s in res.get_json()['data']['subtitles']]
        self.assertEqual(names, ['Main Course', 'Workbook'])

    def test_list_reports_total_count(self):
        self.post('/api/v1/publications', self.PAYLOAD, user=self.admin)
        self.post('/api/v1/publications', dict(self.PAYLOAD, name='Oxford', subtitles=[]), user=self.admin)

        body = self.get('/api/v1/publications?limit=1', user=self.admin).get_json()

        self.assertEqual(body['results'], 1)
        self.assertEqual(body['totalCount'], 2)

    def test_delete_removes_subtitles(self):
        pub_id = self.post('/api/v1/publications', self.PAYLOAD, user=self.admin).get_json()['data']['id']

        res = self.delete(f'/api/v1/publications/{pub_id}', user=self.admin)

        self.assertEqual(res.status_code, 204)
        self.assertEqual(PublicationSubtitle.query.filter_by(publication=pub_id).count(), 0)

    def test_invalid_gstin_and_discount(self):
        payload = dict(self.PAYLOAD, gstin='bad', discount=150)

        res = self.post('/api/v1/publications', payload, user=self.admin)

        self.assertEqual(res.status_code, 400)
        error = res.get_json()['error']
        self.assertIn('not a valid GSTIN', error)
        self.assertIn('Discount must be between 0 and 100', error)

    def test_subtitle_endpoints(self):
        pub_id = self.post('/api/v1/publications', dict(self.PAYLOAD, subtitles=[]),
                           user=self.admin).get_json()['data']['id']

        created = self.post(f'/api/v1/publications/{pub_id}/subtitles', {'name': 'Reader'}, user=self.admin)
        sub_id = created.get_json()['data']['id']
        listed = self.get(f'/api/v1/publications/{pub_id}/subtitles', user=self.admin).get_json()
        deleted = self.delete(f'/api/v1/publications/{pub_id}/subtitles/{sub_id}', user=self.admin)

        self.assertEqual(created.status_code, 201)
        self.assertEqual(listed['results'], 1)
        self.assertEqual(deleted.status_code, 204)


class TestBookCatalog(CatalogTestCase):

    def setUp(self):
        super().setUp()
        self.publication = Publication.create(name='NCERT', personName='Desk', city=1,
                                              mobileNumber='9876543210', address='Delhi')

    def book(self, **fields):
        payload = {'bookName': 'Maths Magic', 'publication': self.publication.id,
                   'bookType': 'common_price', 'commonPrice': 120, 'commonIsbn': '978-81-7450'}
        payload.update(fields)
        return payload

    def test_common_price_book(self):
        res = self.post('/api/v1/book-catalogs', self.book(pricesByClass={'1': 10}), user=self.admin)
        data = res.get_json()['data']

        self.assertEqual(res.status_code, 201)
        self.assertEqual(data['commonPrice'], 120)
        self.assertIsNone(data['pricesByClass'])
        self.assertEqual(data['publication'], {'id': self.publication.id, 'name': 'NCERT'})

    def test_common_price_rules(self):
        missing_isbn = self.post('/api/v1/book-catalogs', self.book(commonIsbn=''), user=self.admin)
        negative = self.post('/api/v1/book-catalogs', self.book(commonPrice=-1), user=self.admin)

        self.assertEqual(missing_isbn.status_code, 400)
        self.assertEqual(missing_isbn.get_json()['error'], 'Common ISBN is required.')
        self.assertEqual(negative.get_json()['error'], 'Common Price must be a non-negative number.')

    def test_default_book_needs_class_prices(self):
        res = self.post('/api/v1/book-catalogs', self.book(bookType='default'), user=self.admin)
        self.assertEqual(res.get_json()['error'], 'At least one class price is required.')

        res = self.post('/api/v1/book-catalogs',
                        self.book(bookType='default', pricesByClass={'1': 90}, isbnByClass={'1': 'X1'}),
                        user=self.admin)
        self.assertEqual(res.status_code, 201)
        self.assertIsNone(res.get_json()['data']['commonPrice'])

    def test_duplicate_book(self):
        self.post('/api/v1/book-catalogs', self.book(), user=self.admin)

        res = self.post('/api/v1/book-catalogs', self.book(), user=self.admin)

        self.assertEqual(res.status_code, 409)

    def test_patch_switches_type(self):
        book_id = self.post('/api/v1/book-catalogs', self.book(), user=self.admin).get_json()['data']['id']

        res = self.patch(f'/api/v1/book-catalogs/{book_id}',
                         {'bookType': 'default', 'pricesByClass': {'2': 80}, 'isbnByClass': {'2': 'Y'}},
                         user=self.admin)

        self.assertEqual(res.status_code, 200)
        book = BookCatalog.query.get(book_id)
        self.assertEqual(book.pricesByClass, {'2': 80})
        self.assertIsNone(book.commonIsbn)

    def test_non_string_name_is_rejected(self):
        res = self.post('/api/v1/book-catalogs', self.book(bookName=123), user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()['error'], 'bookName must be a string')
        self.assertEqual(BookCatalog.query.count(), 0)


class TestStationery(CatalogTestCase):

    def test_validation_and_duplicates(self):
        ok = self.post('/api/v1/stationery-items', {'itemName': 'Crayons', 'category': 'Art', 'price': 40},
                       user=self.admin)
        dup = self.post('/api/v1/stationery-items', {'itemName': 'Crayons', 'category': 'Art'}, user=self.admin)
        bad = self.post('/api/v1/stationery-items',
                        {'itemName': 'Glue', 'category': 'Art', 'marginPercentage': 150}, user=self.admin)

        self.assertEqual(ok.status_code, 201)
        self.assertEqual(dup.status_code, 409)
        self.assertEqual(bad.status_code, 400)
        self.assertIn('Margin Percentage', bad.get_json()['error'])
        self.assertEqual(StationeryItem.query.count(), 1)


class TestCustomers(CatalogTestCase):

    def test_school_customer_requires_branch_and_code(self):
        payload = {'customerName': 'St. Xavier', 'city': 1, 'customerType': 'School'}

        res = self.post('/api/v1/customers', payload, user=self.admin)
        self.assertEqual(res.get_json()['error'], 'For School customers, Branch is required.')

        branch = self.make_branch()
        res = self.post('/api/v1/customers', dict(payload, branch=branch.id), user=self.admin)
        self.assertEqual(res.get_json()['error'], 'For School customers, School Code is required.')

        res = self.post('/api/v1/customers', dict(payload, branch=branch.id, schoolCode='sx01'), user=self.admin)
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.get_json()['data']['schoolCode'], 'SX01')
        self.assertEqual(res.get_json()['data']['branch']['name'], 'Main Branch')

    def test_optional_fields_validated_when_present(self):
        res = self.post('/api/v1/customers',
                        {'customerName': 'Shop', 'city': 1, 'mobileNumber': '123', 'panNumber': 'ABC'},
                        user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertIn('10-digit', res.get_json()['error'])
        self.assertIn('PAN number', res.get_json()['error'])

    def test_filtered_list(self):
        Customer.create(customerName='A', city=1, customerType='Retail')
        Customer.create(customerName='B', city=2, customerType='Retail')

        body = self.get('/api/v1/customers?city=2', user=self.admin).get_json()

        self.assertEqual(body['totalRecords'], 1)
        self.assertEqual(body['data'][0]['customerName'], 'B')

    def test_missing_name_is_rejected(self):
        res = self.post('/api/v1/customers', {'city': 1, 'customerType': 'Retail'}, user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()['error'], 'Customer name is required')


class TestTransports(CatalogTestCase):

    def test_create_and_total(self):
        res = self.post('/api/v1/transports', {'name': 'Shree Cargo'}, user=self.admin)
        body = self.get('/api/v1/transports', user=self.admin).get_json()

        self.assertEqual(res.status_code, 201)
        self.assertEqual(body['totalCount'], 1)
        self.assertEqual(body['data'][0]['name'], 'Shree Cargo')

    def test_undeclared_fields_are_ignored(self):
        res = self.post('/api/v1/transports',
                        {'name': 'Blue Dart', 'save': 1, 'hidden_fields': [], 'vehicleNumber': 'RJ14 1234'},
                        user=self.admin)

        self.assertEqual(res.status_code, 201)
        data = res.get_json()['data']
        self.assertNotIn('save', data)
        self.assertNotIn('vehicleNumber', data)

        transport_id = data['id']
        updated = self.patch(f'/api/v1/transports/{transport_id}', {'name': 'Blue Dart Express', 'to_dict': 0},
                             user=self.admin)
        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.get_json()['data']['name'], 'Blue Dart Express')

    def test_name_required(self):
        res = self.post('/api/v1/transports', {}, user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.get_json()['error'], 'Transport name is required')


class TestBranchesAndUsers(CatalogTestCase):

    BRANCH = {'name': 'Bikaner', 'location': 'Bikaner', 'shopOwnerName': 'K. Singh',
              'address': 'Station Road', 'mobileNumber': '9123456789', 'shopGstId': '08abcde1234f1z5'}

    def test_branch_rules(self):
        res = self.post('/api/v1/branches', self.BRANCH, user=self.admin)
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.get_json()['data']['shopGstId'], '08ABCDE1234F1Z5')
        self.assertEqual(res.get_json()['data']['createdBy'], self.admin.id)

        dup_name = self.post('/api/v1/branches', self.BRANCH, user=self.admin)
        dup_mobile = self.post('/api/v1/branches', dict(self.BRANCH, name='Other', shopGstId=None),
                               user=self.admin)
        missing = self.post('/api/v1/branches', {'name': 'X'}, user=self.admin)

        self.assertEqual(dup_name.status_code, 409)
        self.assertEqual(dup_mobile.get_json()['error'], 'A branch with this mobile number already exists.')
        self.assertEqual(missing.status_code, 400)

    def test_employee_can_read_but_not_create_branches(self):
        employee = self.make_employee(self.make_branch())

        self.assertEqual(self.get('/api/v1/branches', user=employee).status_code, 200)
        self.assertEqual(self.post('/api/v1/branches', self.BRANCH, user=employee).status_code, 403)

    def test_stock_managers(self):
        payload = {'name': 'Keeper', 'email': 'k@example.com', 'phone': '9000000001',
                   'password': 'pw123456', 'address': 'Depot'}

        created = self.post('/api/v1/stock-managers', payload, user=self.admin)
        duplicate = self.post('/api/v1/stock-managers', dict(payload, phone='9000000002'), user=self.admin)
        missing = self.post('/api/v1/stock-managers', {'name': 'Keeper'}, user=self.admin)

        self.assertEqual(created.status_code, 201)
        self.assertNotIn('password_hash', created.get_json()['data'])
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(missing.status_code, 400)

    def test_branch_admin_from_employee(self):
        branch = self.make_branch()
        employee = self.make_employee(branch)
        payload = {'employeeId': employee.id, 'email': 'head@example.com', 'password': 'pw123456'}

        res = self.post('/api/v1/branch-admins', payload, user=self.admin)
        again = self.post('/api/v1/branch-admins', payload, user=self.admin)

        self.assertEqual(res.status_code, 201)
        admin = res.get_json()['data']['admin']
        self.assertEqual(admin['name'], 'Staff Member')
        self.assertEqual(admin['branchId']['name'], 'Main Branch')
        self.assertEqual(again.status_code, 409)
        self.assertEqual(BranchAdmin.query.count(), 1)

    def test_branch_admin_sees_only_own_employees(self):
        own, other = self.make_branch(), self.make_branch(name='Other Branch')
        self.make_employee(other, email='far@example.com')
        branch_admin = self.make_branch_admin(own)

        res = self.get('/api/v1/employees', user=branch_admin)
        emails = [e['email'] for e in res.get_json()['data']]

        self.assertEqual(emails, ['emp.manager@example.com'])
        created = self.post('/api/v1/employees',
                            {'name': 'New Hire', 'email': 'new@example.com', 'password': 'pw123456'},
                            user=branch_admin)
        self.assertEqual(created.get_json()['data']['branchId']['id'], own.id)


class TestSets(CatalogTestCase):

    def setUp(self):
        super().setUp()
        self.customer = Customer.create(customerName='DPS', city=1)
        self.other_customer = Customer.create(customerName='KV', city=1)
        self.klass = SchoolClass.create(name='Class 3')
        self.book_a = BookCatalog.create(bookName='English Reader', publication=1,
                                         bookType='common_price', commonPrice=150, commonIsbn='1')
        self.item = StationeryItem.create(itemName='Pencil Box', category='School', price=60)

    def create_set(self):
        payload = {
            'customer': self.customer.id,
            'class': self.klass.id,
            'books': [{'book': self.book_a.id, 'quantity': 2, 'price': 150}],
            'stationeryItems': [{'item': self.item.id, 'quantity': 1, 'price': 60}],
        }
        return self.post('/api/v1/sets', payload, user=self.admin)

    def test_create_computes_total(self):
        res = self.create_set()
        data = res.get_json()['data']['set']

        self.assertEqual(res.status_code, 201)
        self.assertEqual(data['totalPrice'], 360)
        self.assertEqual(data['books'][0]['status'], 'active')
        self.assertEqual(data['books'][0]['book']['bookName'], 'English Reader')
        self.assertEqual(data['class'], {'id': self.klass.id, 'name': 'Class 3'})

    def test_duplicate_set(self):
        self.create_set()

        self.assertEqual(self.create_set().status_code, 409)

    def test_get_by_filters(self):
        self.create_set()

        found = self.get(f'/api/v1/sets?customerId={self.customer.id}&classId={self.klass.id}', user=self.admin)
        missing = self.get(f'/api/v1/sets?customerId={self.other_customer.id}&classId={self.klass.id}',
                           user=self.admin)
        bad = self.get('/api/v1/sets?customerId=1', user=self.admin)

        self.assertEqual(found.get_json()['data']['set']['customer']['customerName'], 'DPS')
        self.assertIsNone(missing.get_json()['data']['set'])
        self.assertEqual(bad.status_code, 400)

    def test_copy_resets_items_to_pending(self):
        source_id = self.create_set().get_json()['data']['set']['id']
        payload = {'sourceSetId': source_id, 'targetCustomerId': self.other_customer.id,
                   'targetClassId': self.klass.id, 'copyStationery': False}

        res = self.post('/api/v1/sets/copy', payload, user=self.admin)
        copied = res.get_json()['data']['set']

        self.assertEqual(res.status_code, 201)
        self.assertEqual([b['status'] for b in copied['books']], ['pending'])
        self.assertEqual(copied['stationeryItems'], [])
        self.assertEqual(copied['totalPrice'], 300)

    def test_item_status_clear_stamps_date(self):
        set_id = self.create_set().get_json()['data']['set']['id']

        res = self.patch(f'/api/v1/sets/{set_id}/item-status',
                         {'itemId': str(self.book_a.id), 'itemType': 'book', 'status': 'clear'},
                         user=self.admin)
        self.assertEqual(res.status_code, 200)
        self.assertIn('clearedDate', Set.query.get(set_id).books[0])

        res = self.patch(f'/api/v1/sets/{set_id}/item-status',
                         {'itemId': self.book_a.id, 'itemType': 'book', 'status': 'active'}, user=self.admin)
        self.assertNotIn('clearedDate', Set.query.get(set_id).books[0])

        bad = self.patch(f'/api/v1/sets/{set_id}/item-status',
                         {'itemId': self.book_a.id, 'itemType': 'book', 'status': 'done'}, user=self.admin)
        missing = self.patch(f'/api/v1/sets/{set_id}/item-status',
                             {'itemId': 999, 'itemType': 'book', 'status': 'clear'}, user=self.admin)
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(missing.status_code, 404)

    def test_update_and_delete(self):
        set_id = self.create_set().get_json()['data']['set']['id']

        res = self.patch(f'/api/v1/sets/{set_id}', {'stationeryItems': []}, user=self.admin)
        self.assertEqual(res.get_json()['data']['set']['totalPrice'], 300)

        self.assertEqual(self.delete(f'/api/v1/sets/{set_id}', user=self.admin).status_code, 204)
        self.assertEqual(Set.query.count(), 0)

    def test_remove_item(self):
        set_id = self.create_set().get_json()['data']['set']['id']

        res = self.patch(f'/api/v1/sets/{set_id}/remove-item',
                         {'itemId': self.item.id, 'itemType': 'stationery'}, user=self.admin)

        self.assertEqual(res.status_code, 200)
        data = res.get_json()['data']['set']
        self.assertEqual(data['stationeryItems'], [])
        self.assertEqual(data['totalPrice'], 300)
        self.assertEqual(Set.query.get(set_id).stationeryItems, [])

        missing = self.patch(f'/api/v1/sets/{set_id}/remove-item',
                             {'itemId': self.item.id, 'itemType': 'stationery'}, user=self.admin)
        bad_type = self.patch(f'/api/v1/sets/{set_id}/remove-item',
                              {'itemId': self.book_a.id, 'itemType': 'magazine'}, user=self.admin)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(bad_type.status_code, 400)

    def test_lines_must_be_objects(self):
        payload = {'customer': self.customer.id, 'class': self.klass.id, 'books': [5]}

        res = self.post('/api/v1/sets', payload, user=self.admin)
        not_a_list = self.post('/api/v1/sets', dict(payload, books={'book': 1}), user=self.admin)

        self.assertEqual(res.status_code, 400)
        self.assertEqual(not_a_list.status_code, 400)
        self.assertEqual(Set.query.count(), 0)

    def test_documents_missing_newer_fields(self):
        # A set stored before stationery lines existed
        Set.collection().insert_one({
            'id': 50, 'customer': self.customer.id, 'class': self.klass.id,
            'books': [{'book': self.book_a.id, 'quantity': 1, 'price': 150, 'status': 'active'}],
        })

        self.assertEqual(Set.query.get(50).stationeryItems, [])
        res = self.post('/api/v1/sets/copy', {'sourceSetId': 50, 'targetCustomerId': self.other_customer.id,
                                              'targetClassId': self.klass.id, 'copyStationery': True},
                        user=self.admin)
        self.assertEqual(res.status_code, 201)
        self.assertEqual(res.get_json()['data']['set']['stationeryItems'], [])

        res = self.patch('/api/v1/sets/50', {'books': []}, user=self.admin)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.get_json()['data']['set']['totalPrice'], 0)



class TestErrors(CatalogTestCase):

    def test_unknown_route(self):
        res = self.client.get('/api/v1/nowhere')

        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.get_json(), {
            'success': False, 'status': 'fail', 'error': "Can't find /api/v1/nowhere on this server!",
        })


if __name__ == '__main__':
    unittest.main(verbosity=2)
