import pytest

from finance_api.analysis import analyze, category_totals, health_report, health_status, spending_ratio


def tx(amount, category):
    return {"amount": amount, "category": category}


def test_empty_list():
    result = analyze([])
    assert result["totalSpent"] == 0
    assert result["riskLevel"] == "low"
    assert result["topCategory"] == "None"


@pytest.mark.parametrize("transactions", [
    [tx(12.5, "Food"), tx(-7.25, "Transport"), tx(100, "Food")],
    [tx(0.1, "Bills"), tx(0.2, "Bills"), tx(0.3, "Health")],
])
def test_breakdown_sums_to_total(transactions):
    result = analyze(transactions)
    assert sum(result["categoryBreakdown"].values()) == pytest.approx(result["totalSpent"])


def test_amounts_are_taken_as_magnitudes():
    result = analyze([tx(-40, "Food"), tx(60, "Transport")])
    assert result["totalSpent"] == 100
    assert result["averageTransaction"] == 50


def test_dominant_category_is_medium_risk():
    result = analyze([tx(51, "Food"), tx(49, "Transport")])
    assert result["riskLevel"] == "medium"
    assert result["topCategory"] == "Food"
    assert "Food represents over 50%" in result["insight"]


def test_exactly_half_is_not_dominant():
    result = analyze([tx(50, "Food"), tx(50, "Transport")])
    assert result["riskLevel"] == "low"


def test_ties_go_to_first_seen_category():
    assert analyze([tx(10, "Health"), tx(10, "Food"), tx(5, "Bills")])["topCategory"] == "Health"


def test_high_average_is_medium_risk():
    result = analyze([tx(20000, "Food"), tx(20000, "Transport"), tx(20000, "Bills")])
    assert result["riskLevel"] == "medium"
    assert result["recommendation"] == "Set daily spending limits"


def test_malformed_amount_is_unknown_risk():
    result = analyze([{"amount": None, "category": "Food"}])
    assert result["riskLevel"] == "unknown"
    assert "error" in result


def test_category_totals_defaults_missing_category():
    assert category_totals([{"amount": 5}]) == {"Other": 5.0}


def test_health_ladder_examples():
    assert health_status(25000, 100000) == {"spendingRatio": 25.0, "status": "Very Healthy", "score": 80}
    assert health_status(150000, 100000) == {"spendingRatio": 150.0, "status": "Critical Overspend", "score": 0}


@pytest.mark.parametrize("spent, status, score", [
    (10000, "Outstanding", 100),
    (15000, "Excellent", 90),
    (35000, "Healthy", 70),
    (45000, "Good", 60),
    (55000, "Fair", 50),
    (65000, "Moderate", 40),
    (75000, "Caution", 30),
    (85000, "At Risk", 20),
    (100000, "Overspending", 10),
])
def test_health_ladder_steps(spent, status, score):
    result = health_status(spent, 100000)
    assert (result["status"], result["score"]) == (status, score)


def test_ratio_without_income():
    assert spending_ratio(500, 0) == 0.0


def test_health_report_savings_ladder():
    profile = {"monthly_income": 100000, "fixed_bills": 20000, "savings_goal": 25000}
    report = health_report(profile, [tx(30000, "Food"), tx(20000, "Transport")])
    assert report["remaining"] == 30000
    assert report["savingsPercentage"] == 30
    assert (report["status"], report["healthScore"]) == ("Excellent", 85)
    assert report["onTrackForGoal"] is True


def test_health_report_overspent():
    profile = {"monthly_income": 1000, "fixed_bills": 500, "savings_goal": 0}
    report = health_report(profile, [tx(800, "Food")])
    assert (report["status"], report["healthScore"]) == ("Poor", 30)
    assert report["onTrackForGoal"] is False


def test_health_report_without_income():
    spent = health_report({"monthly_income": 0, "fixed_bills": 0, "savings_goal": 0}, [tx(50, "Food")])
    assert spent["savingsPercentage"] == 0
    assert spent["remaining"] == -50
    assert (spent["status"], spent["healthScore"]) == ("Poor", 30)

    idle = health_report({"monthly_income": 0}, [])
    assert idle["savingsPercentage"] == 0
    assert (idle["status"], idle["healthScore"]) == ("Fair", 55)
