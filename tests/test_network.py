"""
test_network.py
~~~~~~~~~~~~~~~

Unit and integration tests for the Network class.
"""

import json
import os
import sys
from types import SimpleNamespace

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fenix import activations
from fenix.exceptions import ValidationError
from fenix.network import Network

XOR_DATA = [
    {'input': [0, 0], 'target': [0]},
    {'input': [0, 1], 'target': [1]},
    {'input': [1, 0], 'target': [1]},
    {'input': [1, 1], 'target': [0]},
]


@pytest.fixture
def xor_network():
    """A seeded 2 -> 4 -> 1 network."""
    return (
        Network(learning_rate=0.3, seed=42)
        .add_layer(4, activations.tanh, input_size=2)
        .add_layer(1, activations.sigmoid)
    )


@pytest.mark.unit
class TestNetworkArchitecture:
    """Test building the layer stack."""

    def test_initial_state(self):
        network = Network()

        assert network.layers == []
        assert network.learning_rate == 0.1
        assert network.training_history == []
        assert network.is_compiled is False

    @pytest.mark.parametrize('seed', [-1, 1.5, 'abc', True, [1]])
    def test_rejects_invalid_seed(self, seed):
        with pytest.raises(ValidationError):
            Network(seed=seed)

    def test_accepts_zero_seed(self):
        a = Network(seed=0).add_layer(2, activations.relu, 2)
        b = Network(seed=0).add_layer(2, activations.relu, 2)
        np.testing.assert_array_equal(a.layers[0].neurons[0].weights, b.layers[0].neurons[0].weights)

    def test_add_layer_chains_input_sizes(self):
        network = Network()
        result = (
            network.add_layer(4, activations.relu, 2)
            .add_layer(3, activations.tanh)
            .add_layer(1, activations.sigmoid, 99)
        )

        assert result is network
        assert [layer.size for layer in network.layers] == [4, 3, 1]
        assert [layer.input_size for layer in network.layers] == [2, 4, 3]

    def test_first_layer_requires_input_size(self):
        with pytest.raises(ValidationError) as exc_info:
            Network().add_layer(2, activations.sigmoid)
        assert 'first layer' in str(exc_info.value)

    @pytest.mark.parametrize('neuron_count', [0, -1, 2.5, None])
    def test_add_layer_rejects_invalid_neuron_count(self, neuron_count):
        with pytest.raises(ValidationError):
            Network().add_layer(neuron_count, activations.sigmoid, 2)

    def test_add_layer_rejects_activation_without_func(self):
        network = Network()
        with pytest.raises(ValidationError):
            network.add_layer(2, SimpleNamespace(), 2)
        assert network.layers == []

    def test_add_layer_invalidates_compilation(self, xor_network):
        xor_network.compile()
        assert xor_network.is_compiled is True

        xor_network.add_layer(2, activations.linear)
        assert xor_network.is_compiled is False

    def test_compile_requires_layers(self):
        with pytest.raises(ValidationError):
            Network().compile()


@pytest.mark.unit
class TestNetworkPredict:
    """Test forward inference."""

    def test_output_length_matches_last_layer(self):
        network = Network(seed=1).add_layer(5, activations.relu, 3).add_layer(2, activations.linear)
        output = network.predict([0.1, 0.2, 0.3])
        assert output.shape == (2,)

    def test_predict_returns_fresh_vector(self, xor_network):
        output = xor_network.predict([1, 0])
        output[0] = 42.0
        assert xor_network.layers[-1].outputs[0] != 42.0

    def test_predict_validates_inputs(self, xor_network):
        with pytest.raises(ValidationError):
            xor_network.predict([1, 0, 1])
        with pytest.raises(ValidationError):
            xor_network.predict(1.0)

    def test_predict_on_empty_network(self):
        with pytest.raises(ValidationError):
            Network().predict([1.0])

    def test_calculate_error(self, xor_network):
        assert xor_network.calculate_error([1.0, 0.0], [0.0, 0.0]) == pytest.approx(0.5)
        with pytest.raises(ValidationError):
            xor_network.calculate_error([1.0], [1.0, 2.0])


@pytest.mark.unit
class TestNetworkTrainingValidation:
    """Test argument checks of train()."""

    @pytest.mark.parametrize('data', [
        [],
        None,
        [{'input': [0, 1]}],
        [{'target': [1]}],
        [{'input': [0, 1], 'target': [1]}, {'input': [0], 'target': [1]}],
        [{'input': [0, 1], 'target': [1]}, {'input': [0, 1], 'target': [1, 0]}],
    ])
    def test_rejects_malformed_data(self, xor_network, data):
        with pytest.raises(ValidationError):
            xor_network.train(data, epochs=1)

    def test_rejects_incompatible_architecture(self, xor_network):
        with pytest.raises(ValidationError):
            xor_network.train([{'input': [0, 1, 1], 'target': [1]}], epochs=1)
        with pytest.raises(ValidationError):
            xor_network.train([{'input': [0, 1], 'target': [1, 0]}], epochs=1)

    def test_rejects_invalid_options(self, xor_network):
        with pytest.raises(ValidationError):
            xor_network.train(XOR_DATA, epochs=0)
        with pytest.raises(ValidationError):
            xor_network.train(XOR_DATA, epochs=5, validation_data=XOR_DATA,
                              early_stopping_patience=0)

    def test_failed_train_leaves_history_intact(self, xor_network):
        xor_network.train(XOR_DATA, epochs=3)
        history = xor_network.get_training_history()
        weights = [layer.get_weights() for layer in xor_network.layers]

        with pytest.raises(ValidationError):
            xor_network.train([{'input': [0], 'target': [1]}], epochs=3)

        assert xor_network.get_training_history() == history
        for layer, before in zip(xor_network.layers, weights):
            for now, then in zip(layer.get_weights(), before):
                np.testing.assert_array_equal(now['weights'], then['weights'])

    def test_learning_rate_validation(self, xor_network):
        assert xor_network.set_learning_rate(0.05) is xor_network
        assert xor_network.learning_rate == 0.05

        for rate in (0, -0.1, float('nan'), float('inf'), '0.1', True):
            with pytest.raises(ValidationError):
                xor_network.set_learning_rate(rate)
        assert xor_network.learning_rate == 0.05


@pytest.mark.integration
class TestNetworkTraining:
    """Test the training loop."""

    def test_xor_error_decreases(self, xor_network):
        initial_error = xor_network.evaluate(XOR_DATA)

        xor_network.train(XOR_DATA, epochs=1000)

        assert xor_network.evaluate(XOR_DATA) < initial_error
        assert xor_network.training_history[-1] < xor_network.training_history[0]

    def test_history_length_equals_epochs(self, xor_network):
        xor_network.train(XOR_DATA, epochs=25)
        assert len(xor_network.training_history) == 25
        assert xor_network.is_compiled is True

    def test_train_returns_self_and_resets_history(self, xor_network):
        assert xor_network.train(XOR_DATA, epochs=10) is xor_network
        xor_network.train(XOR_DATA, epochs=4)
        assert len(xor_network.get_training_history()) == 4

    def test_early_stopping_when_validation_never_improves(self):
        # step has a zero derivative, so the weights never move
        network = Network(seed=3).add_layer(2, activations.step, 2).add_layer(1, activations.step)

        network.train(XOR_DATA, epochs=100, validation_data=XOR_DATA,
                      early_stopping_patience=3)

        assert len(network.training_history) == 4

    def test_early_stopping_halts_within_patience(self, xor_network):
        patience = 5
        validation_errors = []

        xor_network.train(
            XOR_DATA,
            epochs=300,
            validation_data=XOR_DATA,
            early_stopping_patience=patience,
            callback=lambda progress: validation_errors.append(progress['validation_error'])
        )

        epochs_run = len(xor_network.training_history)
        assert epochs_run == len(validation_errors)
        best_epoch = int(np.argmin(validation_errors)) + 1
        assert epochs_run - best_epoch <= patience

    def test_callback_receives_progress(self, xor_network):
        progress = []
        xor_network.train(XOR_DATA, epochs=3, callback=progress.append)

        assert [p['epoch'] for p in progress] == [1, 2, 3]
        assert all(p['total_epochs'] == 3 for p in progress)
        assert progress[-1]['error'] == xor_network.training_history[-1]
        assert progress[0]['validation_error'] is None

    def test_verbose_training_logs_progress(self, xor_network, caplog):
        with caplog.at_level('INFO', logger='fenix.network'):
            xor_network.train(XOR_DATA, epochs=20, verbose=True)

        progress_lines = [r for r in caplog.records if 'Epoch' in r.getMessage()]
        assert len(progress_lines) == 10

    def test_same_seed_gives_same_training_run(self):
        def build():
            return (
                Network(seed=123)
                .add_layer(3, activations.sigmoid, 2)
                .add_layer(1, activations.sigmoid)
            )

        a = build().train(XOR_DATA, epochs=20)
        b = build().train(XOR_DATA, epochs=20)

        assert a.get_training_history() == b.get_training_history()

    def test_regression_task(self):
        data = [{'input': [x / 10], 'target': [2 * x / 10 + 0.1]} for x in range(10)]
        network = Network(learning_rate=0.05, seed=5).add_layer(1, activations.linear, 1)

        network.train(data, epochs=500)

        assert network.training_history[-1] < 1e-3
        assert network.predict([0.5])[0] == pytest.approx(1.1, abs=0.05)


class FirstIndexRng:
    """Stand-in generator whose shuffle always swaps with index 0."""

    def integers(self, low, high):
        return low


@pytest.mark.unit
class TestTrainingOrder:
    """Test the order in which weights are updated."""

    @pytest.fixture
    def chain_network(self):
        """A hand-set linear 2 -> 1 -> 1 network."""
        network = (
            Network(learning_rate=0.1)
            .add_layer(1, activations.linear, 2)
            .add_layer(1, activations.linear)
        )
        network.layers[0].set_weights([{'weights': [0.5, -0.5], 'bias': 0.1}])
        network.layers[1].set_weights([{'weights': [2.0], 'bias': 0.0}])
        return network

    def test_backpropagate_updates_output_layer_first(self, chain_network):
        hidden, output = chain_network.layers

        assert chain_network.predict([1.0, 1.0])[0] == pytest.approx(0.2)
        chain_network.backpropagate([1.0])

        # output delta = 1.0 - 0.2; hidden output was 0.1
        output_delta = 0.8
        updated_weight = output.get_connection_weights()[0][0]
        assert updated_weight == pytest.approx(2.0 + 0.1 * output_delta * 0.1)
        assert output.neurons[0].bias == pytest.approx(0.1 * output_delta)

        hidden_delta = output_delta * updated_weight
        np.testing.assert_allclose(
            hidden.neurons[0].weights,
            [0.5 + 0.1 * hidden_delta, -0.5 + 0.1 * hidden_delta]
        )
        assert hidden.neurons[0].bias == pytest.approx(0.1 + 0.1 * hidden_delta)
        # the pre-update weight of 2.0 would give a different step
        assert hidden.neurons[0].weights[0] != pytest.approx(0.5 + 0.1 * output_delta * 2.0)

    def test_examples_update_weights_one_after_another(self, chain_network):
        data = [
            {'input': [1.0, 0.0], 'target': [0.5]},
            {'input': [0.0, 1.0], 'target': [-0.5]},
            {'input': [1.0, 1.0], 'target': [1.0]},
        ]
        replay = Network.import_model(chain_network.export_model())
        chain_network.rng = FirstIndexRng()

        chain_network.train(data, epochs=1)

        # swapping with index 0 turns [a, b, c] into [b, c, a]
        errors = []
        for example in (data[1], data[2], data[0]):
            output = replay.predict(example['input'])
            errors.append(replay.calculate_error(output, example['target']))
            replay.backpropagate(example['target'])

        assert chain_network.training_history[0] == pytest.approx(np.mean(errors))
        for trained, expected in zip(chain_network.layers, replay.layers):
            for got, want in zip(trained.get_weights(), expected.get_weights()):
                np.testing.assert_allclose(got['weights'], want['weights'])
                assert got['bias'] == pytest.approx(want['bias'])

    def test_every_epoch_reshuffles(self, monkeypatch):
        network = Network(seed=8).add_layer(2, activations.tanh, 3).add_layer(1, activations.sigmoid)
        data = [
            {'input': [i / 8, 1 - i / 8, (i % 2) * 1.0], 'target': [i % 2]}
            for i in range(8)
        ]
        seen = []
        predict = network.predict

        def recording_predict(inputs):
            seen.append(tuple(inputs))
            return predict(inputs)

        monkeypatch.setattr(network, 'predict', recording_predict)
        network.train(data, epochs=10)

        orders = [tuple(seen[i:i + 8]) for i in range(0, len(seen), 8)]
        assert len(orders) == 10
        all_inputs = sorted(tuple(example['input']) for example in data)
        assert all(sorted(order) == all_inputs for order in orders)
        assert len(set(orders)) > 1


@pytest.mark.unit
class TestNetworkState:
    """Test introspection, reset, export and import."""

    def test_get_info(self, xor_network):
        info = xor_network.get_info()

        assert info['layers'] == 2
        assert info['architecture'] == [4, 1]
        assert info['input_size'] == 2
        assert info['output_size'] == 1
        assert info['total_parameters'] == 4 * 2 + 4 + 1 * 4 + 1
        assert info['learning_rate'] == 0.3
        assert info['is_compiled'] is False
        assert info['trained_epochs'] == 0
        assert info['last_error'] is None

    def test_get_info_empty_network(self):
        info = Network().get_info()
        assert info['input_size'] == 0
        assert info['output_size'] == 0
        assert info['total_parameters'] == 0

    def test_training_history_is_copy(self, xor_network):
        xor_network.train(XOR_DATA, epochs=3)
        history = xor_network.get_training_history()
        history.append(99.0)
        history[0] = -1.0

        assert len(xor_network.training_history) == 3
        assert xor_network.training_history[0] != -1.0

    def test_reset_keeps_weights(self, xor_network):
        xor_network.train(XOR_DATA, epochs=3)
        weights_before = [layer.get_weights() for layer in xor_network.layers]

        xor_network.reset()

        assert xor_network.get_training_history() == []
        for layer, before in zip(xor_network.layers, weights_before):
            assert len(layer.outputs) == 0
            assert all(n.last_inputs is None and n.last_output is None for n in layer.neurons)
            for now, then in zip(layer.get_weights(), before):
                np.testing.assert_array_equal(now['weights'], then['weights'])
                assert now['bias'] == then['bias']

    def test_export_model_document(self, xor_network):
        xor_network.train(XOR_DATA, epochs=2)
        document = json.loads(xor_network.export_model())

        assert document['learningRate'] == 0.3
        assert len(document['trainingHistory']) == 2
        first = document['architecture'][0]
        assert first['neuronCount'] == 4
        assert first['inputSize'] == 2
        assert first['activationFunction'] == 'tanh'
        assert len(first['weights']) == 4
        assert len(first['weights'][0]['weights']) == 2
        assert isinstance(first['weights'][0]['bias'], float)

    def test_export_unnamed_activation(self):
        custom = SimpleNamespace(func=lambda x: x, derivative=lambda x: 1.0)
        network = Network().add_layer(1, custom, 1)
        document = json.loads(network.export_model())
        assert document['architecture'][0]['activationFunction'] == 'unknown'

    def test_import_reproduces_predictions(self, xor_network):
        xor_network.train(XOR_DATA, epochs=50)

        restored = Network.import_model(xor_network.export_model())

        assert restored.get_training_history() == xor_network.get_training_history()
        assert restored.learning_rate == xor_network.learning_rate
        assert restored.layers[1].activation_function is activations.sigmoid
        for example in XOR_DATA:
            np.testing.assert_array_equal(
                restored.predict(example['input']),
                xor_network.predict(example['input'])
            )

    def test_import_accepts_mapping(self, xor_network):
        restored = Network.import_model(json.loads(xor_network.export_model()))
        assert restored.get_info()['architecture'] == [4, 1]

    def test_import_rejects_broken_input_chain(self, xor_network):
        document = json.loads(xor_network.export_model())
        document['architecture'][1]['inputSize'] = 5
        with pytest.raises(ValidationError):
            Network.import_model(document)

    def test_import_rejects_unknown_activation(self, xor_network):
        document = json.loads(xor_network.export_model())
        document['architecture'][0]['activationFunction'] = 'unknown'
        with pytest.raises(ValidationError):
            Network.import_model(document)

    def test_import_rejects_wrong_weight_shapes(self, xor_network):
        document = json.loads(xor_network.export_model())
        document['architecture'][0]['weights'][2]['weights'].append(0.5)
        with pytest.raises(ValidationError):
            Network.import_model(document)

        document = json.loads(xor_network.export_model())
        document['architecture'][1]['weights'] = []
        with pytest.raises(ValidationError):
            Network.import_model(document)

    @pytest.mark.parametrize('document', [
        'not json',
        '[]',
        {'architecture': []},
        {'architecture': [{'neuronCount': 0, 'inputSize': 2}]},
    ])
    def test_import_rejects_malformed_documents(self, document):
        with pytest.raises(ValidationError):
            Network.import_model(document)
