import threading

from flagcraft import Experiment, FlagCraft, Result, TrackingDispatcher


def getTrackingMock(gb: FlagCraft):
    calls = []

    def track(experiment, result):
        return calls.append([experiment, result])

    gb.set_tracking_callback(track)
    return lambda: calls


def _result(variation_id: int, in_experiment: bool = True) -> Result:
    return Result(
        variationId=variation_id,
        inExperiment=in_experiment,
        value=variation_id,
        hashUsed=True,
        hashAttribute="id",
        hashValue="1",
    )


def test_tracking():
    gb = FlagCraft(attributes={"id": "1"})

    getMockedCalls = getTrackingMock(gb)

    exp1 = Experiment(key="my-tracked-test", variations=[0, 1])
    exp2 = Experiment(key="my-other-tracked-test", variations=[0, 1])

    res1 = gb.run(exp1)
    res2 = gb.run(exp1)
    res3 = gb.run(exp1)
    res4 = gb.run(exp2)
    gb.set_attributes({"id": "2"})
    res5 = gb.run(exp2)

    calls = getMockedCalls()
    # Every exposure is tracked, repeats included
    assert calls == [[exp1, res1], [exp1, res2], [exp1, res3], [exp2, res4], [exp2, res5]]

    gb.destroy()


def test_subscriptions_fire_on_change_only():
    gb = FlagCraft(attributes={"id": "1"})
    getMockedCalls = getTrackingMock(gb)

    fired = []
    gb.subscribe(lambda experiment, result: fired.append((experiment.key, result.variationId)))

    exp = Experiment(key="my-other-tracked-test", variations=[0, 1])

    # id "1" hashes to 0.141 (variation 0), id "2" to 0.974 (variation 1)
    gb.run(exp)
    gb.run(exp)
    assert len(getMockedCalls()) == 2
    assert fired == [("my-other-tracked-test", 0)]

    gb.set_attributes({"id": "2"})
    gb.run(exp)
    gb.run(exp)
    assert fired == [("my-other-tracked-test", 0), ("my-other-tracked-test", 1)]

    gb.set_attributes({"id": "1"})
    gb.run(exp)
    assert fired[-1] == ("my-other-tracked-test", 0)
    assert len(fired) == 3

    gb.destroy()


def test_control_results_do_not_notify():
    gb = FlagCraft(attributes={"id": "1"})
    getMockedCalls = getTrackingMock(gb)
    fired = []
    gb.subscribe(lambda experiment, result: fired.append(result))

    gb.run(Experiment(key="my-test", variations=[0, 1], coverage=0.1))

    assert getMockedCalls() == []
    assert fired == []
    assert gb.get_all_results() == {}

    gb.destroy()


def test_unsubscribe():
    gb = FlagCraft(attributes={"id": "1"})
    fired = []

    def callback(experiment, result):
        fired.append(result)

    unsubscribe = gb.subscribe(callback)
    gb.run(Experiment(key="test-a", variations=[0, 1]))
    unsubscribe()
    gb.run(Experiment(key="test-b", variations=[0, 1]))

    assert len(fired) == 1

    gb.subscribe(callback)
    gb.unsubscribe(callback)
    gb.run(Experiment(key="test-c", variations=[0, 1]))
    assert len(fired) == 1

    gb.destroy()


def test_get_all_results():
    gb = FlagCraft(attributes={"id": "1"})
    exp = Experiment(key="my-test", variations=[0, 1])

    res = gb.run(exp)

    results = gb.get_all_results()
    assert list(results) == ["my-test"]
    assert results["my-test"]["experiment"] is exp
    assert results["my-test"]["result"] is res

    gb.destroy()
    assert gb.get_all_results() == {}


def test_feature_experiments_are_tracked():
    gb = FlagCraft(
        attributes={"id": "123"},
        features={
            "signup-button-color": {
                "defaultValue": "gray",
                "rules": [{"key": "btn", "variations": ["blue", "green"]}],
            }
        },
    )
    getMockedCalls = getTrackingMock(gb)
    fired = []
    gb.subscribe(lambda experiment, result: fired.append(result))

    gb.eval_feature("signup-button-color")
    gb.eval_feature("signup-button-color")

    calls = getMockedCalls()
    assert len(calls) == 2
    assert calls[0][0].key == "btn"
    assert calls[0][1].featureId == "signup-button-color"
    assert len(fired) == 1

    gb.destroy()


def test_handles_failing_callbacks():
    gb = FlagCraft(attributes={"id": "1"})

    gb.set_tracking_callback(lambda experiment, result: 1 / 0)
    assert gb.run(Experiment(key="my-test", variations=[0, 1])).value == 1

    gb.subscribe(lambda: 1 / 0)
    assert gb.run(Experiment(key="my-new-test", variations=[0, 1])).value == 0

    gb.destroy()


def test_failing_subscriber_does_not_block_others():
    dispatcher = TrackingDispatcher()
    fired = []

    def broken(experiment, result):
        raise RuntimeError("boom")

    dispatcher.subscribe(broken)
    dispatcher.subscribe(lambda experiment, result: fired.append(result))

    exp = Experiment(key="exp", variations=[0, 1])
    dispatcher.report(exp, _result(1))

    assert len(fired) == 1


def test_subscribing_twice_registers_once():
    dispatcher = TrackingDispatcher()
    fired = []

    def callback(experiment, result):
        fired.append(result)

    dispatcher.subscribe(callback)
    dispatcher.subscribe(callback)
    dispatcher.report(Experiment(key="exp", variations=[0, 1]), _result(0))

    assert len(fired) == 1


def test_ledger_compares_variation_only():
    dispatcher = TrackingDispatcher()
    fired = []
    dispatcher.subscribe(lambda experiment, result: fired.append(result.variationId))
    exp = Experiment(key="exp", variations=[0, 1])

    dispatcher.report(exp, _result(1))
    dispatcher.report(exp, _result(1))
    dispatcher.report(exp, _result(0))
    dispatcher.report(exp, _result(0, in_experiment=False))

    assert fired == [1, 0]
    assert dispatcher.get_all_results()["exp"]["result"].variationId == 0


def test_concurrent_reports_notify_once():
    dispatcher = TrackingDispatcher()
    fired = []
    dispatcher.subscribe(lambda experiment, result: fired.append(result))
    exp = Experiment(key="exp", variations=[0, 1])
    start = threading.Barrier(8)

    def worker():
        start.wait()
        for _ in range(200):
            dispatcher.report(exp, _result(1))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(fired) == 1


def test_subscriber_may_unsubscribe_itself():
    dispatcher = TrackingDispatcher()
    fired = []

    def once(experiment, result):
        fired.append(result)
        unsubscribe()

    unsubscribe = dispatcher.subscribe(once)
    dispatcher.report(Experiment(key="a", variations=[0, 1]), _result(0))
    dispatcher.report(Experiment(key="b", variations=[0, 1]), _result(0))

    assert len(fired) == 1
