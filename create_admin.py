from gestor import app, db
from gestor.constants import Role
from gestor.models.tables import User
import getpass
import logging

logging.basicConfig(level=logging.INFO)

def main():
    """Cria um usuário master (administração da plataforma, sem empresa)."""
    logging.info("Criar Usuário Master")

    nome = input("Nome completo: ")
    email = input("Email: ").strip().lower()
    password = getpass.getpass("Senha: ")

    if User.query.filter_by(email=email).first():
        logging.error("Já existe um usuário com o email '%s'", email)
        return

    new_user = User(
        nome=nome,
        email=email,
        tipo_usuario=Role.MASTER,
        empresa_id=None,
        ativo=True,
    )
    new_user.set_password(password)

    db.session.add(new_user)
    db.session.commit()

    logging.info("Usuário '%s' criado com sucesso com o papel 'master'!", email)

if __name__ == '__main__':
    # O script precisa do contexto da aplicação para acessar o banco
    with app.app_context():
        main()
