"""
test_api_server.py
~~~~~~~~~~~~~~~~~~

Tests for the REST API, using Flask's test client.
"""

import base64

import pytest

from neural import api_server
from neural.model_persistence import dump_network, get_network_metadata
from neural.network import Network


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Test client with a fresh model store and empty in-memory state."""
    monkeypatch.setattr(api_server, 'MODEL_DIR', str(tmp_path))
    api_server.active_networks.clear()
    api_server.training_jobs.clear()
    api_server.app.config['TESTING'] = True

    with api_server.app.test_client() as test_client:
        yield test_client

    api_server.active_networks.clear()
    api_server.training_jobs.clear()


@pytest.fixture
def xor_network_id(client):
    response = client.post('/api/networks', json={
        'input_size': 2,
        'output_size': 1,
        'hidden_sizes': [2]
    })
    return response.get_json()['network_id']


def xor_payload(xor_examples):
    return [{'input': x, 'expected': y} for x, y in xor_examples]


@pytest.mark.unit
class TestNetworkEndpoints:

    def test_status(self, client):
        response = client.get('/api/status')
        assert response.status_code == 200
        assert response.get_json() == {
            'status': 'online',
            'active_networks': 0,
            'training_jobs': 0
        }

    def test_create_network(self, client):
        response = client.post('/api/networks', json={
            'input_size': 3,
            'output_size': 2,
            'hidden_sizes': [4, 5],
            'activation': 'sigmoid'
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['architecture'] == [3, 4, 5, 2]
        assert data['activation'] == 'sigmoid'
        assert data['network_id'] in api_server.active_networks

    @pytest.mark.parametrize('body', [
        {},
        {'input_size': 0, 'output_size': 1},
        {'input_size': 2, 'output_size': 1, 'hidden_sizes': [2, -1]},
        {'input_size': 2, 'output_size': 1, 'hidden_sizes': 3},
        {'input_size': True, 'output_size': 1},
        {'input_size': 2, 'output_size': 1, 'hidden_sizes': [True]},
        {'input_size': 2, 'output_size': 1, 'activation': 'relu'},
    ])
    def test_create_network_invalid(self, client, body):
        response = client.post('/api/networks', json=body)
        assert response.status_code == 400
        assert 'error' in response.get_json()

    def test_run_network(self, client, xor_network_id):
        response = client.post(
            f'/api/networks/{xor_network_id}/run', json={'input': [1, 0]}
        )

        assert response.status_code == 200
        output = response.get_json()['output']
        assert len(output) == 1
        assert -1.0 < output[0] < 1.0

    def test_run_dimension_mismatch(self, client, xor_network_id):
        response = client.post(
            f'/api/networks/{xor_network_id}/run', json={'input': [1, 0, 1]}
        )
        assert response.status_code == 400

    def test_run_unknown_network(self, client):
        response = client.post('/api/networks/nope/run', json={'input': [1]})
        assert response.status_code == 404

    def test_list_networks(self, client, xor_network_id):
        networks = client.get('/api/networks').get_json()['networks']
        assert [n['network_id'] for n in networks] == [xor_network_id]
        assert networks[0]['status'] == 'in_memory'

    def test_delete_network(self, client, xor_network_id):
        response = client.delete(f'/api/networks/{xor_network_id}')
        assert response.status_code == 200
        assert xor_network_id not in api_server.active_networks

        response = client.delete(f'/api/networks/{xor_network_id}')
        assert response.status_code == 404

    @pytest.mark.parametrize('days', [-1, True, '2'])
    def test_cleanup_rejects_invalid_days(self, client, days):
        response = client.post('/api/networks/cleanup', json={'days': days})
        assert response.status_code == 400


@pytest.mark.unit
class TestExportImport:

    def test_export_returns_weight_document(self, client, xor_network_id):
        response = client.get(f'/api/networks/{xor_network_id}/export')

        assert response.status_code == 200
        net = api_server.active_networks[xor_network_id]['network']
        assert response.data == dump_network(net)

    def test_import_round_trip(self, client, rng):
        net = Network(2, 2, [3], rng=rng)

        response = client.post(
            '/api/networks/import?activation=tanh',
            data=dump_network(net),
            content_type='application/octet-stream'
        )

        assert response.status_code == 201
        network_id = response.get_json()['network_id']
        imported = api_server.active_networks[network_id]['network']
        for original_w, imported_w in zip(net.weights, imported.weights):
            assert original_w.tobytes() == imported_w.tobytes()
        assert get_network_metadata(network_id, api_server.MODEL_DIR) is not None

    def test_import_malformed(self, client, rng):
        data = dump_network(Network(2, 1, rng=rng))[:-3]

        response = client.post(
            '/api/networks/import',
            data=data,
            content_type='application/octet-stream'
        )

        assert response.status_code == 400
        assert api_server.active_networks == {}


@pytest.mark.integration
class TestTraining:

    def test_train_validation(self, client, xor_network_id, xor_examples):
        url = f'/api/networks/{xor_network_id}/train'

        assert client.post(url, json={'examples': []}).status_code == 400
        assert client.post(url, json={
            'examples': xor_payload(xor_examples), 'epochs': 0
        }).status_code == 400
        assert client.post(url, json={
            'examples': [{'input': [1, 0, 1], 'expected': [1]}]
        }).status_code == 400

    @pytest.mark.parametrize('options', [
        {'epochs': True},
        {'epochs': 2.5},
        {'learning_rate': True},
        {'learning_rate': -0.1},
    ])
    def test_train_rejects_invalid_options(self, client, xor_network_id,
                                           xor_examples, options):
        response = client.post(f'/api/networks/{xor_network_id}/train', json=dict(
            options, examples=xor_payload(xor_examples)
        ))

        assert response.status_code == 400
        assert api_server.training_jobs == {}

    def test_train_rejects_busy_network(self, client, xor_network_id, xor_examples):
        api_server.training_jobs['job'] = {
            'network_id': xor_network_id,
            'status': 'training'
        }

        response = client.post(f'/api/networks/{xor_network_id}/train', json={
            'examples': xor_payload(xor_examples)
        })

        assert response.status_code == 409

    def test_train_task(self, client, xor_network_id, xor_examples):
        """Run the background task synchronously and check its results."""
        job_id = 'job-1'
        api_server.training_jobs[job_id] = {
            'network_id': xor_network_id,
            'status': 'pending',
            'progress': 0,
            'epochs': 20
        }

        api_server.train_network_task(
            xor_network_id, job_id, xor_examples, 20, 0.5
        )

        job = api_server.training_jobs[job_id]
        assert job['status'] == 'completed'
        assert job['progress'] == 100

        info = api_server.active_networks[xor_network_id]
        assert info['trained'] is True
        assert len(info['history']) == 20
        assert info['mse'] == info['history'][-1]

        metadata = get_network_metadata(xor_network_id, api_server.MODEL_DIR)
        assert metadata['trained'] is True
        assert metadata['mse'] == pytest.approx(info['mse'])

        response = client.get(f'/api/training/{job_id}')
        assert response.get_json()['status'] == 'completed'

        response = client.get(f'/api/networks/{xor_network_id}/error_curve')
        assert response.status_code == 200
        image = base64.b64decode(response.get_json()['image_data'])
        assert image.startswith(b'\x89PNG')

    def test_delete_during_training_cancels_job(self, client, xor_network_id,
                                                xor_examples, monkeypatch):
        """Deleting a network mid-training must not resurrect it on disk."""
        job_id = 'job-1'
        api_server.training_jobs[job_id] = {
            'network_id': xor_network_id,
            'status': 'pending',
            'progress': 0,
            'epochs': 20
        }
        deletions = []

        def sleep_and_delete(seconds=0):
            if not deletions:
                deletions.append(client.delete(f'/api/networks/{xor_network_id}'))

        monkeypatch.setattr(api_server.gevent, 'sleep', sleep_and_delete)

        api_server.train_network_task(
            xor_network_id, job_id, xor_examples, 20, 0.5
        )

        assert deletions[0].status_code == 200
        assert api_server.training_jobs[job_id]['status'] == 'cancelled'
        assert xor_network_id not in api_server.active_networks
        assert get_network_metadata(xor_network_id, api_server.MODEL_DIR) is None
        assert client.get('/api/networks').get_json()['networks'] == []

    def test_error_curve_requires_history(self, client, xor_network_id):
        response = client.get(f'/api/networks/{xor_network_id}/error_curve')
        assert response.status_code == 404
