"""Pytest configuration and fixtures."""
import os

import pytest

# Set test environment variables
os.environ["CLAUSE_ENV"] = "test"
os.environ["CLAUSE_SANDBOX"] = "isolated"
os.environ["CLAUSE_SANDBOX_TIMEOUT_S"] = "1.0"

ACME_MODEL = """
namespace: org.acme.test
imports:
  - org.accordproject.runtime.*
types:
  Party:
    kind: participant
    identifiedBy: partyId
    fields:
      partyId: String
      name: String?
  TemplateModel:
    kind: asset
    identifiedBy: contractId
    fields:
      contractId: String
      seller: "--> Party"
      rate: Double
  Foo:
    fields:
      amount: Double
  Counter:
    fields:
      count: Integer
      tags: String[]
  MyRequest:
    kind: transaction
    extends: Request
    fields:
      input: String
  MyResponse:
    kind: transaction
    extends: Response
    fields:
      output: String
  Paid:
    kind: event
    fields:
      amount: Double
  Status:
    kind: enum
    values: [DRAFT, SIGNED]
"""

HELLO_LOGIC = '''
class HelloWorld:
    def init(self, ctx):
        return {"response": None, "state": ctx["__state"], "emit": ctx["__emit"]}

    def bar(self, ctx):
        return {"response": ctx["request"], "state": ctx["__state"], "emit": ctx["__emit"]}

    def greet(self, ctx):
        request = ctx["request"]["$data"]
        response = {"$class": "org.acme.test.MyResponse", "output": "Hello " + request["input"]}
        return {"response": response, "state": ctx["__state"], "emit": ctx["__emit"]}

    def pay(self, ctx):
        event = {"$class": "org.acme.test.Paid", "amount": ctx["amount"]}
        return {"response": None, "state": ctx["__state"], "emit": [event]}

    def count(self, ctx):
        counter = ctx["counter"]["$data"]
        response = {"$class": "org.acme.test.Counter", "count": {"$nat": counter["count"]["$nat"] + 1}, "tags": counter["tags"]}
        return {"response": response, "state": ctx["__state"], "emit": ctx["__emit"]}

    def seller(self, ctx):
        return {"response": ctx["__contract"]["$data"]["seller"], "state": ctx["__state"], "emit": ctx["__emit"]}

    def rate(self, ctx):
        return {"response": ctx["__contract"]["$data"]["rate"] * 2, "state": ctx["__state"], "emit": ctx["__emit"]}

    def options(self, ctx):
        return {"response": ctx["__options"]["template"], "state": ctx["__state"], "emit": ctx["__emit"]}

    def fail(self, ctx):
        return {"$error": "Payment is overdue"}

    def crash(self, ctx):
        return 1 / 0

    def spin(self, ctx):
        while True:
            pass

    def stubborn(self, ctx):
        while True:
            try:
                while True:
                    pass
            except Exception:
                pass

    def total(self, ctx):
        return {"response": sum(range(3 * 10 ** 8)), "state": ctx["__state"], "emit": ctx["__emit"]}

    def sneak(self, ctx):
        import os
        return {"response": os.getcwd(), "state": ctx["__state"], "emit": ctx["__emit"]}

    def mutate(self, ctx):
        ctx["__state"]["$data"]["hacked"] = True
        return {"response": None, "state": ctx["__state"], "emit": ctx["__emit"]}


def dispatch(ctx):
    request_type = ctx["request"]["$class"][0]
    if request_type == "org.acme.test.MyRequest":
        return HelloWorld().greet(ctx)
    return {"$error": "No clause handles " + request_type}
'''

DEFAULT_STATE = {"$class": "org.accordproject.runtime.State"}


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reset cached settings around each test."""
    from clause_runtime.config import reset_settings

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def acme_model():
    return ACME_MODEL


@pytest.fixture
def hello_logic():
    return HELLO_LOGIC


@pytest.fixture
def logic_manager():
    """Logic manager loaded with the test model and logic, not yet compiled."""
    from clause_runtime.logic import LogicManager

    logic = LogicManager("python")
    logic.add_model_file(ACME_MODEL, "models/acme.yaml")
    logic.add_logic_file(HELLO_LOGIC, "logic/logic.py")
    return logic


@pytest.fixture
def compiled_logic(logic_manager):
    """Logic manager with compiled logic."""
    logic_manager.compile_logic_sync()
    return logic_manager


@pytest.fixture
def contract_data():
    return {
        "$class": "org.acme.test.TemplateModel",
        "contractId": "c-1",
        "seller": "resource:org.acme.test.Party#alice",
        "rate": 2.5,
    }


@pytest.fixture
def default_state():
    return dict(DEFAULT_STATE)
