from cesta.core.relevance import (
    CategoryRule,
    TermRule,
    contains_token_as_word,
    is_relevant_for_term,
    is_weight_based_item,
)


def test_token_as_word():
    assert contains_token_as_word("arroz tio joao 5kg", "arroz")
    assert not contains_token_as_word("arrozinho doce", "arroz")
    assert contains_token_as_word("cafe-pilao", "pilao")


def test_multi_token_terms_need_every_token():
    assert is_relevant_for_term("feijao preto", "Feijão Preto Camil 1kg")
    assert not is_relevant_for_term("feijao preto", "Feijão Carioca Camil 1kg")


def test_short_tokens_use_substring():
    # "pe" and "de" are under 3 chars: substring containment is enough
    assert is_relevant_for_term("pe de moleque", "Doce Pé-de-Moleque Santa Helena")
    assert is_relevant_for_term("cafe em po", "Café Pilão Torrado e Moído em Pó 500g")


def test_long_tokens_need_word_boundary():
    assert not is_relevant_for_term("sal", "Salsicha Sadia 500g")
    assert is_relevant_for_term("sal", "Sal Refinado Cisne 1kg")
    assert not is_relevant_for_term("ovo", "Ovomaltine 400g")


def test_butcher_term_keeps_butcher_titles():
    assert is_relevant_for_term("carne moida", "Carne Moída Bovina Resfriada 500g")
    assert is_relevant_for_term("picanha", "Picanha Bovina Resfriada 1kg")


def test_category_rule_is_swappable():
    # a category matched through a short token must also match the title
    a2 = CategoryRule(name="a2_milk", tokens=("a2",))
    assert not is_relevant_for_term("leite a2", "Leite Integral A2000 1L", category_rules=[a2])
    assert is_relevant_for_term("leite a2", "Leite Integral A2 Piracanjuba 1L", category_rules=[a2])


def test_milk_accepts_liquid_milk():
    assert is_relevant_for_term("leite", "Leite Integral UHT Italac 1L")
    assert is_relevant_for_term("leite", "Leite Desnatado Parmalat 1 litro")


def test_milk_rejects_derivatives():
    assert not is_relevant_for_term("leite", "Leite Condensado Moça 395g")
    assert not is_relevant_for_term("leite", "Chocolate ao Leite Lacta 90g")
    assert not is_relevant_for_term("leite", "Leite em Pó Ninho Integral 400g")
    assert not is_relevant_for_term("leite", "Sabonete Leite de Aveia")


def test_milk_requires_positive_indicator():
    assert not is_relevant_for_term("leite", "Leite Piracanjuba")


def test_term_rules_are_swappable():
    rules = {"cafe": TermRule(term="cafe", denied=("capsula",))}
    assert not is_relevant_for_term("cafe", "Café Capsula Nespresso", term_rules=rules)
    assert is_relevant_for_term("cafe", "Café Pilão 500g", term_rules=rules)
    # without the leite rule, a bare "Leite" title passes
    assert is_relevant_for_term("leite", "Leite Piracanjuba", term_rules={})


def test_weight_based_items():
    assert is_weight_based_item("picanha", "Picanha Bovina 300g")
    assert is_weight_based_item("file de tilapia", "Filé de Tilápia Congelado")
    assert not is_weight_based_item("arroz", "Arroz Tio João 5kg")
