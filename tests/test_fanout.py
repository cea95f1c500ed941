from walkin_queue.fanout import QUEUE_UPDATED, Event, FanOut, MqttSink


class FakeMqtt:
    def __init__(self):
        self.published = []

    def publish(self, topic, message, *, retain=False):
        self.published.append((topic, message))


def test_publish_reaches_department_and_global_subscribers_only():
    fan = FanOut()
    cardio, dental, everything = [], [], []
    fan.subscribe("cardiology", cardio.append)
    fan.subscribe("dental", dental.append)
    fan.subscribe_all(everything.append)

    ev = Event(QUEUE_UPDATED, "cardiology", {"seq": 1})
    assert fan.publish(ev) == 2

    assert cardio == [ev]
    assert dental == []
    assert everything == [ev]


def test_failing_subscriber_is_skipped():
    fan = FanOut()
    got = []

    def broken(event):
        raise RuntimeError("gone")

    fan.subscribe("cardiology", broken)
    fan.subscribe("cardiology", got.append)

    assert fan.publish(Event(QUEUE_UPDATED, "cardiology")) == 1
    assert len(got) == 1


def test_unsubscribe():
    fan = FanOut()
    got = []
    handle = fan.subscribe("cardiology", got.append)
    assert fan.subscriber_count("cardiology") == 1
    assert fan.unsubscribe(handle) is True
    assert fan.unsubscribe(handle) is False
    fan.publish(Event(QUEUE_UPDATED, "cardiology"))
    assert got == []
    assert fan.subscriber_count("cardiology") == 0


def test_mqtt_sink_forwards_to_department_and_global_topics():
    fan = FanOut()
    mqtt = FakeMqtt()
    MqttSink(mqtt=mqtt, namespace="demo").attach(fan)

    fan.publish(Event("token:called", "x ray/2", {"seq": 4}))

    msg = {"type": "token:called", "department": "x ray/2", "seq": 4}
    assert mqtt.published == [
        ("demo/departments/x%20ray%2F2/events", msg),
        ("demo/events/all", msg),
    ]
