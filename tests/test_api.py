def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'


def test_protected_routes_require_token(client):
    response = client.get('/api/emis')
    assert response.status_code == 401
    assert response.get_json()['success'] is False

    response = client.get('/api/emis', headers={'Authorization': 'Bearer not-a-token'})
    assert response.status_code == 401


def test_register_login_and_me(client, register):
    headers, user = register("Asha", "asha@example.com", monthlyIncome=90000)
    assert user['role'] == 'super_admin'
    assert user['monthlyIncome'] == 90000.0

    response = client.post('/api/auth/login', json={'email': 'asha@example.com', 'password': 'secret123'})
    assert response.status_code == 200
    assert response.get_json()['token']

    response = client.get('/api/auth/me', headers=headers)
    assert response.get_json()['user']['email'] == 'asha@example.com'


def test_register_duplicate_is_conflict(client, register):
    register("Asha", "asha@example.com")
    response = client.post('/api/auth/register', json={'name': 'A', 'email': 'asha@example.com', 'password': 'secret123'})
    assert response.status_code == 409


def test_login_wrong_password(client, register):
    register("Asha", "asha@example.com")
    response = client.post('/api/auth/login', json={'email': 'asha@example.com', 'password': 'nope-nope'})
    assert response.status_code == 401


def test_payment_crud_and_date_format(client, register):
    headers, _ = register("Asha", "asha@example.com")
    payload = {'name': 'Car Loan', 'emiType': 'ending', 'category': 'expense', 'amount': 5000,
               'emiDay': 1, 'startDate': '2024-01-01', 'endDate': '2024-06-01'}

    response = client.post('/api/payments?client_date=2024-03-10', json=payload, headers=headers)
    assert response.status_code == 201
    payment = response.get_json()['data']
    assert payment['startDate'] == '2024-01-01T12:00:00'
    assert payment['nextPaymentDate'] == '2024-04-01T12:00:00'
    assert payment['pendingEmis'] == 6
    assert payment['amount'] == 5000.0

    response = client.get('/api/payments', headers=headers)
    assert len(response.get_json()['data']) == 1

    response = client.put(f"/api/payments/{payment['id']}", json={**payload, 'amount': 5500}, headers=headers)
    assert response.get_json()['data']['amount'] == 5500.0

    response = client.delete(f"/api/payments/{payment['id']}", headers=headers)
    assert response.status_code == 200
    response = client.get(f"/api/payments/{payment['id']}", headers=headers)
    assert response.status_code == 404


def test_non_object_json_body_is_bad_request(client, register):
    headers, _ = register("Asha", "asha@example.com")
    response = client.post('/api/payments', json=[1], headers=headers)
    assert response.status_code == 400
    assert response.get_json()['message'] == "Please enter EMI name."


def test_payment_validation_is_bad_request(client, register):
    headers, _ = register("Asha", "asha@example.com")
    response = client.post('/api/payments', json={'name': '', 'amount': 10}, headers=headers)
    assert response.status_code == 400
    assert response.get_json()['message'] == "Please enter EMI name."


def test_mark_upcoming_transaction_paid(client, register):
    headers, _ = register("Asha", "asha@example.com")
    client.post('/api/payments', headers=headers, json={
        'name': 'Rent', 'emiType': 'recurring', 'category': 'expense', 'amount': 18000,
        'emiDay': 5, 'startDate': '2024-03-01',
    })

    response = client.get('/api/payments/transactions/upcoming?days=30&client_date=2024-03-10', headers=headers)
    upcoming = response.get_json()['data']
    assert [t['paymentDate'] for t in upcoming] == ['2024-03-05T12:00:00', '2024-04-05T12:00:00']

    response = client.put(f"/api/payments/transactions/{upcoming[0]['id']}", json={'status': 'paid'}, headers=headers)
    assert response.status_code == 200
    assert response.get_json()['data']['status'] == 'paid'


def test_emi_pay_endpoint(client, register):
    headers, _ = register("Asha", "asha@example.com")
    response = client.post('/api/emis', headers=headers, json={
        'name': 'Phone', 'type': 'mobile_emi', 'paymentType': 'emi', 'emiAmount': 2500,
        'totalInstallments': 2, 'startDate': '2024-01-15',
    })
    emi = response.get_json()['data']

    for _ in range(2):
        response = client.post(f"/api/emis/{emi['id']}/pay", json={}, headers=headers)
        assert response.status_code == 200
    assert response.get_json()['data']['status'] == 'completed'

    response = client.post(f"/api/emis/{emi['id']}/pay", json={}, headers=headers)
    assert response.status_code == 400


def test_users_cannot_reach_other_users_data(client, register):
    owner_headers, _ = register("Asha", "asha@example.com")
    member_headers, _ = register("Ravi", "ravi@example.com")
    response = client.post('/api/emis', headers=owner_headers, json={
        'name': 'Car', 'type': 'car_loan', 'emiAmount': 9000, 'totalInstallments': 24, 'startDate': '2024-01-01',
    })
    emi_id = response.get_json()['data']['id']

    assert client.get(f'/api/emis/{emi_id}', headers=member_headers).status_code == 404
    assert client.delete(f'/api/emis/{emi_id}', headers=member_headers).status_code == 404


def test_admin_routes_are_role_protected(client, register):
    owner_headers, _ = register("Asha", "asha@example.com")
    member_headers, member = register("Ravi", "ravi@example.com")

    assert client.get('/api/users', headers=member_headers).status_code == 403
    assert client.get('/api/roles/permissions', headers=member_headers).status_code == 403

    response = client.get('/api/users', headers=owner_headers)
    assert len(response.get_json()['data']) == 2

    response = client.put(f"/api/users/{member['id']}", headers=owner_headers,
                          json={'name': 'Ravi', 'email': 'ravi@example.com', 'role': 'admin'})
    assert response.get_json()['data']['role'] == 'admin'

    # The role is read from the database, so the same token now passes
    assert client.get('/api/users', headers=member_headers).status_code == 200


def test_role_permissions(client, register):
    owner_headers, _ = register("Asha", "asha@example.com")
    member_headers, _ = register("Ravi", "ravi@example.com")

    body = client.get('/api/roles/permissions', headers=owner_headers).get_json()
    assert body['permissions']['user']['/users'] is False
    assert {'path': '/dashboard', 'name': 'Dashboard'} in body['menuPaths']

    response = client.put('/api/roles/permissions/bulk', headers=owner_headers,
                          json={'permissions': {'user': {'/reports': False}}})
    assert response.status_code == 200

    paths = client.get('/api/roles/my-permissions', headers=member_headers).get_json()['paths']
    assert '/reports' not in paths
    assert '/dashboard' in paths


def test_house_savings_endpoints(client, register):
    headers, _ = register("Asha", "asha@example.com")
    for day, amount in [('2024-01-07', 10000), ('2024-02-07', 12000)]:
        response = client.post('/api/house-savings', json={'date': day, 'amount': amount}, headers=headers)
        assert response.status_code == 201

    body = client.get('/api/house-savings?limit=1', headers=headers).get_json()
    assert body['total'] == 2
    assert len(body['data']) == 1

    response = client.put('/api/house-savings/goal', json={'goal': 44000}, headers=headers)
    assert response.get_json()['goal'] == 44000
    assert client.get('/api/house-savings/goal', headers=headers).get_json()['goal'] == 44000
    summary = client.get('/api/house-savings/summary', headers=headers).get_json()['data']
    assert summary['goalProgress'] == 50.0

    response = client.get('/api/house-savings/export', headers=headers)
    assert response.mimetype == 'text/csv'
    assert response.get_data(as_text=True).startswith('Date,Amount,Notes')


def test_member_cannot_read_another_users_savings(client, register):
    _, owner = register("Asha", "asha@example.com")
    member_headers, _ = register("Ravi", "ravi@example.com")
    response = client.get(f"/api/house-savings?userId={owner['id']}", headers=member_headers)
    assert response.status_code == 403


def test_transactions_and_reports(client, register):
    headers, _ = register("Asha", "asha@example.com")
    categories = client.get('/api/categories?type=expense', headers=headers).get_json()['data']
    food = next(c for c in categories if c['name'] == 'Food & Dining')

    client.post('/api/transactions', headers=headers, json={
        'type': 'expense', 'amount': 450, 'description': 'Lunch', 'date': '2024-03-02',
        'paymentMethod': 'cash', 'category': food['id'],
    })
    body = client.get('/api/transactions?page=1&limit=5', headers=headers).get_json()
    assert body['pagination']['totalItems'] == 1
    assert body['data'][0]['category']['name'] == 'Food & Dining'

    report = client.get('/api/reports/spending?startDate=2024-03-01&endDate=2024-03-31',
                        headers=headers).get_json()['data']
    assert report['totalSpending'] == 450.0
    assert report['categoryBreakdown'][0]['name'] == 'Food & Dining'

    dashboard = client.get('/api/reports/dashboard?period=month&client_date=2024-03-15',
                           headers=headers).get_json()['data']
    assert dashboard['summary']['totalExpenses'] == 450.0


def test_forecast_and_freedom_endpoints(client, register):
    headers, _ = register("Asha", "asha@example.com", monthlyIncome=50000)
    client.post('/api/payments', headers=headers, json={
        'name': 'Rent', 'emiType': 'recurring', 'category': 'expense', 'amount': 10000,
        'emiDay': 5, 'startDate': '2024-01-01',
    })

    forecast = client.get('/api/payments/forecast?months=3&client_date=2024-03-10', headers=headers).get_json()['data']
    assert forecast['months'] == 3
    assert [b['total'] for b in forecast['series']] == [10000.0, 10000.0, 10000.0]

    freedom = client.get('/api/payments/financial-freedom', headers=headers).get_json()['data']
    assert freedom['metrics']['debtToIncomeRatio'] == 20.0
    assert freedom['timeToFreedom'] is None


def test_unknown_api_route_is_json_404(client):
    response = client.get('/api/nope')
    assert response.status_code == 404
    assert response.get_json()['success'] is False


def test_cli_create_admin(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['create-admin', 'Root', 'root@example.com', 'secret123'])
    assert result.exit_code == 0, result.output
    assert 'role=super_admin' in result.output
